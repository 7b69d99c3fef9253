"""Passive collection of console errors, failed responses and broken images."""

import logging
import re
from urllib.parse import urlsplit

from playwright.async_api import Page

from afterburn.models.execution import BrokenImage, ConsoleError, ErrorCollection, NetworkFailure
from afterburn.utils.logging import redact_sensitive_data, redact_sensitive_url

logger = logging.getLogger(__name__)

_IMAGE_EXTENSION = re.compile(r"\.(jpg|jpeg|png|gif|svg|webp|ico)$", re.IGNORECASE)


class ErrorListeners:
    """
    Attach console, response and pageerror listeners to a page.

    Use as a context manager so listeners are removed when the workflow ends::

        with ErrorListeners(page) as listeners:
            ...
        listeners.collection.console_errors
    """

    def __init__(self, page: Page):
        self.page = page
        self.collection = ErrorCollection()

    def _on_console(self, message) -> None:
        if message.type != "error":
            return
        self.collection.console_errors.append(ConsoleError(
            message=redact_sensitive_data(message.text) or "",
            url=redact_sensitive_url(self.page.url) or "",
        ))

    def _on_response(self, response) -> None:
        status = response.status
        if status < 400:
            return

        request = response.request
        resource_type = request.resource_type
        url = response.url

        self.collection.network_failures.append(NetworkFailure(
            url=redact_sensitive_url(url) or "",
            status=status,
            method=request.method,
            resource_type=resource_type,
        ))

        path = urlsplit(url).path
        if resource_type == "image" or _IMAGE_EXTENSION.search(path):
            filename = path.rsplit("/", 1)[-1]
            self.collection.broken_images.append(BrokenImage(
                url=redact_sensitive_url(url) or "",
                status=status,
                selector=f'img[src*="{filename}"]' if filename else "img",
            ))

    def _on_page_error(self, error) -> None:
        name = getattr(error, "name", None) or "Error"
        message = getattr(error, "message", None) or str(error)
        self.collection.console_errors.append(ConsoleError(
            message=redact_sensitive_data(f"Uncaught {name}: {message}") or "",
            url=redact_sensitive_url(self.page.url) or "",
        ))

    def attach(self) -> "ErrorListeners":
        self.page.on("console", self._on_console)
        self.page.on("response", self._on_response)
        self.page.on("pageerror", self._on_page_error)
        return self

    def detach(self) -> None:
        for event, handler in (
            ("console", self._on_console),
            ("response", self._on_response),
            ("pageerror", self._on_page_error),
        ):
            try:
                self.page.remove_listener(event, handler)
            except Exception as e:
                logger.debug(f"Could not remove {event} listener: {e}")

    def __enter__(self) -> "ErrorListeners":
        return self.attach()

    def __exit__(self, exc_type, exc, tb):
        self.detach()
        return False
