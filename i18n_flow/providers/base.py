"""Provider base classes: the external translator collaborator."""

from __future__ import annotations

from typing import Any, Dict, Iterable, Mapping, Optional, Union

from i18n_flow.core.context import TranslationContext

ProviderResult = Union[str, Iterable[str]]


class ProviderError(RuntimeError):
    def __init__(
        self,
        message: str,
        *,
        error_type: str | None = None,
        status_code: int | None = None,
        url: str | None = None,
        response_text: str | None = None,
    ) -> None:
        super().__init__(message)
        self.error_type = error_type
        self.status_code = status_code
        self.url = url
        self.response_text = response_text


class BaseProvider:
    """Turns a set of source texts into raw tagged-item text.

    ``execute`` returns either one complete string or an iterable of
    fragments; callers must not assume fragment boundaries line up with
    item boundaries.
    """

    def __init__(self, profile: Dict[str, Any]):
        self.profile = profile

    @property
    def provider_id(self) -> str:
        return str(self.profile.get("id") or type(self).__name__)

    def execute(
        self, context: TranslationContext, texts: Optional[Mapping[str, str]] = None
    ) -> ProviderResult:
        raise NotImplementedError
