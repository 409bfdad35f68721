"""
Form Interaction Engine

Fills an ordered list of form fields on a loaded Playwright page, activates
the submit control once and waits for the triggered work to settle.
"""

from typing import Any, Optional

from ..errors import InteractionError
from ..logging_config import setup_logging
from ..models.scrape_models import FieldKind, FormInteractionSpec
from .network_capture import NetworkCapture

# Create module-specific logger
logger = setup_logging("form_interaction")

# How long to wait for a field to appear before counting it
FIELD_WAIT_TIMEOUT_MS = 5000


class FormInteractionEngine:
    """Applies a :class:`FormInteractionSpec` to a page."""

    def __init__(self, field_wait_timeout_ms: int = FIELD_WAIT_TIMEOUT_MS):
        self.field_wait_timeout_ms = field_wait_timeout_ms

    async def _single(self, page: Any, selector: str) -> Any:
        """Locate the one element `selector` refers to."""
        locator = page.locator(selector)
        try:
            await locator.first.wait_for(state="attached", timeout=self.field_wait_timeout_ms)
        except Exception as e:
            raise InteractionError(f"No element matches selector {selector!r}") from e
        count = await locator.count()
        if count != 1:
            raise InteractionError(
                f"Selector {selector!r} matched {count} elements, expected exactly one"
            )
        return locator

    async def interact(
        self,
        page: Any,
        spec: FormInteractionSpec,
        capture: Optional[NetworkCapture] = None,
    ) -> None:
        """Fill `spec.fields` in order, submit once, then settle.

        Raises:
            InteractionError: a selector did not match exactly one element, or
                a field or the submit control could not be operated.
        """
        for field in spec.fields:
            element = await self._single(page, field.selector)
            try:
                if field.kind is FieldKind.SELECT:
                    await element.select_option(value=field.value)
                else:
                    # fill() clears existing content before typing
                    await element.fill(field.value)
            except Exception as e:
                raise InteractionError(
                    f"Could not set {field.kind.value} field {field.selector!r}: {e}"
                ) from e
            logger.debug(
                "Form field applied",
                extra={"selector": field.selector, "kind": field.kind.value},
            )

        submit = await self._single(page, spec.submit_button_selector)
        pattern = spec.wait_for_response_pattern
        if pattern and capture is not None and pattern in capture.patterns:
            capture.expect(pattern)
        try:
            await submit.click()
        except Exception as e:
            raise InteractionError(
                f"Could not activate submit control {spec.submit_button_selector!r}: {e}"
            ) from e

        logger.info(
            "Form submitted",
            extra={
                "fields": len(spec.fields),
                "submit_selector": spec.submit_button_selector,
            },
        )
        await self._settle(page, spec, capture)

    async def _settle(
        self,
        page: Any,
        spec: FormInteractionSpec,
        capture: Optional[NetworkCapture],
    ) -> None:
        pattern = spec.wait_for_response_pattern
        if pattern and capture is not None and pattern in capture.patterns:
            seen = await capture.wait_for(pattern, spec.wait_after_submit_ms)
            if not seen:
                logger.warning(
                    "Expected response not captured before timeout",
                    extra={"pattern": pattern, "timeout_ms": spec.wait_after_submit_ms},
                )
            return
        # Fixed-delay fallback; the page exposes no reliable "done" signal
        await page.wait_for_timeout(spec.wait_after_submit_ms)
