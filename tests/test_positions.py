"""
Tests for the signature position store.
"""
import math

import pytest
from pydantic import ValidationError

from signflow.exceptions import (
    NotFoundError,
    PermissionDeniedException,
    StateConflictException,
    ValidationException,
)
from signflow.models import (
    FieldType,
    PositionCreateRequest,
    PositionStatus,
    PositionUpdateRequest,
    RecipientStatus,
)

from fakes import build_signing_task


def placement(setup, index=0, **overrides):
    values = dict(
        recipient_id=setup.recipients[index].id,
        file_id=setup.file.id,
        page_number=1,
        x_percent=50,
        y_percent=10,
        width_percent=20,
        height_percent=5,
    )
    values.update(overrides)
    return PositionCreateRequest(**values)


class TestCreatePosition:
    """Owner placement of new fields."""

    @pytest.mark.asyncio
    async def test_stores_percentages_and_derives_pixels(self, services, owner, sample_pdf):
        setup = await build_signing_task(services, owner, sample_pdf, recipient_count=1, publish=False)

        written = await services.positions.create(owner, placement(setup, x_percent=10, y_percent=10))

        view = written.position
        assert view.x_percent == 10
        assert view.page_width == 595
        assert view.page_height == 842
        assert view.pixel.x == 60
        assert view.pixel.y == 84
        assert view.status == PositionStatus.PENDING
        assert view.placeholder_text == "Click to sign"

    @pytest.mark.asyncio
    async def test_out_of_bounds_rejected_with_every_error(self, services, owner, sample_pdf):
        setup = await build_signing_task(services, owner, sample_pdf, recipient_count=1, publish=False)

        with pytest.raises(ValidationException) as exc:
            await services.positions.create(owner, placement(setup, x_percent=95, width_percent=10, height_percent=0))

        assert exc.value.code == "INVALID_POSITION"
        errors = exc.value.details["errors"]
        assert len(errors) == 2
        assert any("95 + 10 = 105 > 100" in e for e in errors)

    @pytest.mark.asyncio
    async def test_page_beyond_document_rejected(self, services, owner, sample_pdf):
        setup = await build_signing_task(services, owner, sample_pdf, recipient_count=1, publish=False)

        with pytest.raises(ValidationException) as exc:
            await services.positions.create(owner, placement(setup, page_number=3))

        assert "Page 3 does not exist" in exc.value.details["errors"][0]

    @pytest.mark.asyncio
    async def test_overlap_is_a_warning_not_an_error(self, services, owner, sample_pdf):
        """The field placed by the setup sits at (10, 70, 30, 5)."""
        setup = await build_signing_task(services, owner, sample_pdf, recipient_count=1, publish=False)

        written = await services.positions.create(
            owner, placement(setup, x_percent=12, y_percent=70, width_percent=30, height_percent=5)
        )

        assert written.position.id
        assert any(setup.positions[0].id in w for w in written.warnings)

    @pytest.mark.asyncio
    async def test_file_from_another_task_rejected(self, services, owner, sample_pdf):
        first = await build_signing_task(services, owner, sample_pdf, recipient_count=1, publish=False)
        second = await build_signing_task(services, owner, sample_pdf, recipient_count=1, publish=False)

        with pytest.raises(ValidationException) as exc:
            await services.positions.create(owner, placement(first, file_id=second.file.id))

        assert exc.value.code == "TASK_MISMATCH"

    @pytest.mark.asyncio
    async def test_only_draft_tasks_accept_fields(self, services, owner, sample_pdf):
        setup = await build_signing_task(services, owner, sample_pdf, recipient_count=1)

        with pytest.raises(PermissionDeniedException):
            await services.positions.create(owner, placement(setup))

    @pytest.mark.asyncio
    async def test_other_tenant_sees_not_found(self, services, owner, other_user, sample_pdf):
        setup = await build_signing_task(services, owner, sample_pdf, recipient_count=1, publish=False)

        with pytest.raises(NotFoundError):
            await services.positions.create(other_user, placement(setup))

    def test_request_rejects_non_finite_coordinates(self):
        with pytest.raises(ValidationError):
            PositionCreateRequest(
                recipient_id="r1", file_id="f1", page_number=1,
                x_percent=math.nan, y_percent=10, width_percent=10, height_percent=5,
            )
        with pytest.raises(ValidationError):
            PositionUpdateRequest(width_percent=math.inf)

    @pytest.mark.asyncio
    async def test_non_finite_rect_is_never_stored(self, services, owner, repository, sample_pdf):
        setup = await build_signing_task(services, owner, sample_pdf, recipient_count=1, publish=False)
        stored_before = len(repository.positions)
        req = PositionCreateRequest.model_construct(**{**placement(setup).model_dump(), "x_percent": math.nan})

        with pytest.raises(ValidationException) as exc:
            await services.positions.create(owner, req)

        assert exc.value.code == "INVALID_POSITION"
        assert exc.value.details["errors"] == ["X position must be a finite number (got nan)"]
        assert len(repository.positions) == stored_before
        groups = await services.positions.list_for_recipient(owner, setup.recipients[0].id)
        assert len(groups[0].positions) == 1

    @pytest.mark.asyncio
    async def test_explicit_zero_page_size_rejected(self, services, owner, sample_pdf):
        setup = await build_signing_task(services, owner, sample_pdf, recipient_count=1, publish=False)

        with pytest.raises(ValidationException) as exc:
            await services.positions.create(owner, placement(setup, page_width=0))

        assert exc.value.details["errors"] == ["Page width must be greater than 0 (got 0)"]


class TestUpdateAndDelete:

    @pytest.mark.asyncio
    async def test_partial_update_keeps_other_fields(self, services, owner, sample_pdf):
        setup = await build_signing_task(services, owner, sample_pdf, recipient_count=1, publish=False)
        position = setup.positions[0]

        written = await services.positions.update_geometry(
            owner, position.id, PositionUpdateRequest(y_percent=20, field_type=FieldType.DATE)
        )

        assert written.position.y_percent == 20
        assert written.position.x_percent == position.x_percent
        assert written.position.field_type == FieldType.DATE

    @pytest.mark.asyncio
    async def test_update_revalidates_merged_rect(self, services, owner, sample_pdf):
        setup = await build_signing_task(services, owner, sample_pdf, recipient_count=1, publish=False)

        with pytest.raises(ValidationException):
            await services.positions.update_geometry(
                owner, setup.positions[0].id, PositionUpdateRequest(x_percent=90)
            )

    @pytest.mark.asyncio
    async def test_delete_removes_position(self, services, owner, repository, sample_pdf):
        setup = await build_signing_task(services, owner, sample_pdf, recipient_count=1, publish=False)

        await services.positions.delete(owner, setup.positions[0].id)

        assert setup.positions[0].id not in repository.positions

    @pytest.mark.asyncio
    async def test_signed_position_cannot_be_deleted(self, services, owner, repository, sample_pdf):
        setup = await build_signing_task(services, owner, sample_pdf, recipient_count=1, publish=False)
        await repository.update_position(setup.positions[0].id, {"status": PositionStatus.SIGNED})

        with pytest.raises(PermissionDeniedException) as exc:
            await services.positions.delete(owner, setup.positions[0].id)

        assert exc.value.code == "POSITION_SIGNED"


class TestListing:

    @pytest.mark.asyncio
    async def test_grouped_by_file_in_file_order(self, services, owner, sample_pdf):
        setup = await build_signing_task(services, owner, sample_pdf, recipient_count=1, publish=False)
        second = await services.tasks.add_file(owner, setup.task.id, "annex.pdf", "application/pdf", sample_pdf)
        await services.positions.create(owner, placement(setup, file_id=second.id, page_number=2))
        await services.positions.create(owner, placement(setup, y_percent=5))

        groups = await services.positions.list_for_recipient(owner, setup.recipients[0].id)

        assert [g.file_id for g in groups] == [setup.file.id, second.id]
        assert [p.y_percent for p in groups[0].positions] == [5, 70]

    @pytest.mark.asyncio
    async def test_list_for_file(self, services, owner, sample_pdf):
        setup = await build_signing_task(services, owner, sample_pdf, recipient_count=2, publish=False)

        positions = await services.positions.list_for_file(owner, setup.file.id)

        assert {p.recipient_id for p in positions} == {r.id for r in setup.recipients}


class TestCheckConflicts:

    @pytest.mark.asyncio
    async def test_conflict_comes_with_suggestions(self, services, owner, sample_pdf):
        setup = await build_signing_task(services, owner, sample_pdf, recipient_count=1, publish=False)

        response = await services.positions.check_conflicts(
            owner, placement(setup, x_percent=10, y_percent=70, width_percent=30, height_percent=5)
        )

        assert response.valid is True
        assert response.has_conflict is True
        assert response.conflicts[0].position_id == setup.positions[0].id
        assert response.conflicts[0].severity == "high"
        assert response.suggestions

    @pytest.mark.asyncio
    async def test_free_spot_has_no_suggestions(self, services, owner, sample_pdf):
        setup = await build_signing_task(services, owner, sample_pdf, recipient_count=1, publish=False)

        response = await services.positions.check_conflicts(owner, placement(setup))

        assert response.has_conflict is False
        assert response.suggestions == []


class TestApplySignerValue:
    """Signer writes through the store."""

    @pytest.mark.asyncio
    async def test_marks_field_signed(self, services, owner, sample_pdf):
        setup = await build_signing_task(services, owner, sample_pdf, recipient_count=1)

        view = await services.positions.apply_signer_value(setup.recipients[0], setup.positions[0].id, " Jane ")

        assert view.status == PositionStatus.SIGNED
        assert view.signature_content == "Jane"
        assert view.signed_at is not None

    @pytest.mark.asyncio
    async def test_second_write_conflicts(self, services, owner, sample_pdf):
        setup = await build_signing_task(services, owner, sample_pdf, recipient_count=1)
        await services.positions.apply_signer_value(setup.recipients[0], setup.positions[0].id, "Jane")

        with pytest.raises(StateConflictException) as exc:
            await services.positions.apply_signer_value(setup.recipients[0], setup.positions[0].id, "Other")

        assert exc.value.code == "FIELD_ALREADY_SIGNED"

    @pytest.mark.asyncio
    async def test_foreign_position_not_found(self, services, owner, sample_pdf):
        setup = await build_signing_task(services, owner, sample_pdf, recipient_count=2)

        with pytest.raises(NotFoundError):
            await services.positions.apply_signer_value(setup.recipients[0], setup.positions[1].id, "Jane")

    @pytest.mark.asyncio
    async def test_required_field_needs_value(self, services, owner, sample_pdf):
        setup = await build_signing_task(services, owner, sample_pdf, recipient_count=1)

        with pytest.raises(ValidationException):
            await services.positions.apply_signer_value(setup.recipients[0], setup.positions[0].id, "   ")

    @pytest.mark.asyncio
    async def test_optional_field_falls_back_to_default(self, services, owner, repository, sample_pdf):
        setup = await build_signing_task(services, owner, sample_pdf, recipient_count=1)
        await repository.update_position(setup.positions[0].id, {"is_required": False, "default_value": "N/A"})

        view = await services.positions.apply_signer_value(setup.recipients[0], setup.positions[0].id, "")

        assert view.signature_content == "N/A"

    @pytest.mark.asyncio
    async def test_signed_recipient_rejected(self, services, owner, repository, sample_pdf):
        setup = await build_signing_task(services, owner, sample_pdf, recipient_count=1)
        recipient = await repository.update_recipient(setup.recipients[0].id, {"status": RecipientStatus.SIGNED})

        with pytest.raises(StateConflictException) as exc:
            await services.positions.apply_signer_value(recipient, setup.positions[0].id, "Jane")

        assert exc.value.status_code == 410
