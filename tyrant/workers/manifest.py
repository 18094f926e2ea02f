"""Worker manifest definition for the plugin system."""

from collections.abc import Callable, Mapping
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ValidationError

from tyrant.errors import InvalidWorkerConfigError
from tyrant.workers.base import Worker


@dataclass(frozen=True, kw_only=True)
class WorkerManifest[ConfigT: BaseModel]:
    """Manifest describing a worker backend plugin.

    The manifest references the backend's configuration class and a factory
    opening one worker, so backends can be loaded lazily by their key.
    """

    config_cls: type[ConfigT]
    worker_factory: Callable[[ConfigT], AbstractAsyncContextManager[Worker]]

    def load_config(self, settings: Mapping[str, Any]) -> ConfigT:
        """Validate backend settings merged from run options and user JSON.

        Raises:
            InvalidWorkerConfigError: If the settings do not fit ``config_cls``

        """
        try:
            return self.config_cls.model_validate(settings)
        except ValidationError as e:
            raise InvalidWorkerConfigError(self.config_cls.__name__, e) from e
