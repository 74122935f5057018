"""Tests for the image downloader."""

from collections.abc import AsyncGenerator

import pytest
from pytest_httpx import HTTPXMock

from soulscan.config.settings import HttpSettings
from soulscan.domain.value_objects.outcomes import (
    PermanentFailure,
    RetryableFailure,
    Success,
)
from soulscan.infrastructure.integrations import HttpImageFetcher

IMAGE_URL = "https://cdn.example.org/covers/moon.jpg"


@pytest.fixture
async def fetcher() -> AsyncGenerator[HttpImageFetcher, None]:
    fetcher = HttpImageFetcher(HttpSettings())
    yield fetcher
    await fetcher.close()


async def test_downloads_jpeg(fetcher: HttpImageFetcher, httpx_mock: HTTPXMock) -> None:
    httpx_mock.add_response(url=IMAGE_URL, content=b"\xff\xd8jpeg", headers={"Content-Type": "image/jpeg"})

    assert await fetcher.fetch_image(IMAGE_URL) == Success((b"\xff\xd8jpeg", ".jpg"))


async def test_content_type_parameters_are_ignored(
    fetcher: HttpImageFetcher, httpx_mock: HTTPXMock
) -> None:
    httpx_mock.add_response(url=IMAGE_URL, content=b"png", headers={"Content-Type": "image/PNG; q=1"})

    assert await fetcher.fetch_image(IMAGE_URL) == Success((b"png", ".png"))


async def test_html_is_not_an_image(fetcher: HttpImageFetcher, httpx_mock: HTTPXMock) -> None:
    httpx_mock.add_response(url=IMAGE_URL, text="<html></html>", headers={"Content-Type": "text/html"})

    assert isinstance(await fetcher.fetch_image(IMAGE_URL), PermanentFailure)


async def test_missing_image(fetcher: HttpImageFetcher, httpx_mock: HTTPXMock) -> None:
    httpx_mock.add_response(url=IMAGE_URL, status_code=404)

    assert await fetcher.fetch_image(IMAGE_URL) == Success(None)


async def test_server_error(fetcher: HttpImageFetcher, httpx_mock: HTTPXMock) -> None:
    httpx_mock.add_response(url=IMAGE_URL, status_code=500)

    assert isinstance(await fetcher.fetch_image(IMAGE_URL), RetryableFailure)
