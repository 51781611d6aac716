"""
Service container and FastAPI dependency getters.

The container is built once at startup and stored on app.state; there
are no module level clients.
"""
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from signflow.config import Settings
from signflow.email import EmailSender
from signflow.gcs import ObjectStorage
from signflow.notifications import Notifier
from signflow.pdf import PDFComposer
from signflow.repository import Repository
from signflow.services.completion import CompletionAggregator
from signflow.services.pdf_pipeline import PDFCompositionPipeline
from signflow.services.positions import PositionStore
from signflow.services.signing import SigningProtocol
from signflow.services.tasks import TaskService


@dataclass
class Services:
    settings: Settings
    repository: Repository
    storage: ObjectStorage
    email: EmailSender
    notifier: Notifier
    positions: PositionStore
    pipeline: PDFCompositionPipeline
    completion: CompletionAggregator
    tasks: TaskService
    signing: SigningProtocol


def build_services(
    settings: Settings,
    repository: Repository,
    storage: ObjectStorage,
    email_sender: EmailSender,
    composer: Optional[PDFComposer] = None,
) -> Services:
    composer = composer or PDFComposer()
    notifier = Notifier(email_sender, storage, settings)
    positions = PositionStore(repository, settings)
    pipeline = PDFCompositionPipeline(repository, storage, positions, composer)
    completion = CompletionAggregator(repository, pipeline, notifier)
    return Services(
        settings=settings,
        repository=repository,
        storage=storage,
        email=email_sender,
        notifier=notifier,
        positions=positions,
        pipeline=pipeline,
        completion=completion,
        tasks=TaskService(repository, storage, notifier, composer, pipeline, settings),
        signing=SigningProtocol(repository, storage, positions, completion, notifier, settings),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_app_settings(request: Request) -> Settings:
    return get_services(request).settings


def get_task_service(request: Request) -> TaskService:
    return get_services(request).tasks


def get_position_store(request: Request) -> PositionStore:
    return get_services(request).positions


def get_signing_protocol(request: Request) -> SigningProtocol:
    return get_services(request).signing
