"""
Service Factory
Wires the filesystem adapters into a SproutService for a resolved AppConfig.
"""

from sprout.application.backup import BackupService
from sprout.application.config import AppConfig
from sprout.application.service import SproutService
from sprout.infrastructure.document import JsonDocumentStorage
from sprout.infrastructure.notes import FileSystemNoteRepository


def build_service(config: AppConfig) -> SproutService:
    if config.vault_root is None or config.data_file is None:
        raise ValueError("Config is not resolved; call resolve_config() first")
    return SproutService(
        notes=FileSystemNoteRepository(config.vault_root),
        storage=JsonDocumentStorage(config.data_file),
        backups=BackupService(config.backup_dir or config.data_file.parent / "backups", config.max_backups),
        save_attempts=config.save_attempts,
    )


async def get_service(config: AppConfig) -> SproutService:
    """A loaded service, ready for sync and scheduling calls."""
    service = build_service(config)
    await service.load()
    return service
