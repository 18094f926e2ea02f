"""Download per-shard result files from CircleCI build artifacts."""

import asyncio
import logging
from collections.abc import AsyncGenerator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

import aiohttp
from pydantic import BaseModel, SecretStr, TypeAdapter

from tyrant.models.result import TestResult, sort_by_file

log = logging.getLogger(__name__)

RESULTS_ARTIFACT_NAME = "test-results-new.json"


class CircleArtifactsConfig(BaseModel):
    """Configuration for the CircleCI artifacts client."""

    vcs_type: str = "github"
    username: str = "code-dot-org"
    project: str = "JS-Interpreter"
    api_base_url: str = "https://circleci.com"
    token: SecretStr | None = None


class Artifact(BaseModel):
    """A build artifact from the CircleCI API."""

    path: str
    pretty_path: str | None = None
    url: str

    @property
    def name(self) -> str:
        return self.pretty_path or self.path


ARTIFACTS_ADAPTER = TypeAdapter(list[Artifact])
RESULTS_ADAPTER = TypeAdapter(list[TestResult])


@dataclass(frozen=True, kw_only=True)
class CircleArtifacts:
    """Client fetching the result files that parallel CI containers uploaded."""

    config: CircleArtifactsConfig
    session: aiohttp.ClientSession = field(repr=False)

    @classmethod
    @asynccontextmanager
    async def from_config(
        cls, config: CircleArtifactsConfig
    ) -> AsyncGenerator["CircleArtifacts", None]:
        """Create client with managed session lifecycle."""
        headers = {"Accept": "application/json"}
        if config.token is not None:
            headers["Circle-Token"] = config.token.get_secret_value()
        async with aiohttp.ClientSession(headers=headers) as session:
            yield cls(config=config, session=session)

    async def list_artifacts(self, build: int) -> Sequence[Artifact]:
        """List all artifacts of a build."""
        url = (
            f"{self.config.api_base_url}/api/v1.1/project/{self.config.vcs_type}"
            f"/{self.config.username}/{self.config.project}/{build}/artifacts"
        )
        async with self.session.get(url) as response:
            if response.status != 200:
                text = await response.text()
                raise RuntimeError(
                    f"Failed to list artifacts of build {build}: "
                    f"{response.status} {text}"
                )
            data = await response.json()
        return ARTIFACTS_ADAPTER.validate_python(data)

    async def fetch_results(self, url: str) -> Sequence[TestResult]:
        """Download and validate one result file."""
        async with self.session.get(url) as response:
            if response.status != 200:
                text = await response.text()
                raise RuntimeError(
                    f"Failed to download {url}: {response.status} {text}"
                )
            data = await response.json(content_type=None)
        return RESULTS_ADAPTER.validate_python(data)

    async def download_results(self, build: int) -> Sequence[TestResult]:
        """Download and merge the result files of every container of a build.

        Returns:
            All results sorted by file

        """
        log.info("Downloading test results from CircleCI build %d...", build)
        artifacts = await self.list_artifacts(build)
        urls = [a.url for a in artifacts if a.name.endswith(RESULTS_ARTIFACT_NAME)]
        log.info("Found %d result file(s)", len(urls))

        downloaded = await asyncio.gather(*(self.fetch_results(url) for url in urls))
        return sort_by_file([r for results in downloaded for r in results])
