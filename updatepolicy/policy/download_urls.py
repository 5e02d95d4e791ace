# Copyright 2025 Roger Cibrian
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Mirror URL selection and per-URL error accounting.

Each payload comes with an ordered list of mirror URLs and a per-URL error
budget. Errors recorded against the payload are charged to the URL they
were reported for:

- URL-fatal errors (bad payload hash, signature problems, ...) exhaust the
  URL immediately.
- Transient errors (transfer, write, HTTP error responses) charge one error.
- Errors unrelated to the URL (cancellation, postinstall, ...) are ignored.

Errors older than the last recorded payload failure belong to a previous
round and are ignored. The URL chosen by the previous decision is charged
at least the error count that decision carried forward.

Selection walks the list in order starting after the previously chosen URL,
wrapping around, so consecutive attempts spread over the mirrors. A payload
that was never attempted starts at the first URL.
"""

from __future__ import annotations

from urllib.parse import urlsplit

from updatepolicy.logging import Logger
from updatepolicy.policy.models import ErrorImpact, UpdateState, classify_error


def is_url_usable(url: str, *, http_allowed: bool) -> bool:
    """Return whether a URL's scheme is acceptable for downloading."""
    scheme = urlsplit(url).scheme.lower()
    if scheme == "https":
        return True
    if scheme == "http":
        return http_allowed
    return False


def url_error_counts(
    state: UpdateState, *, errors_max: int, logger: Logger
) -> list[int]:
    """Count errors charged to every URL of the current payload.

    Args:
        state: Snapshot of the current payload.
        errors_max: Per-URL error budget; URL-fatal errors charge this much.
        logger: Receives one line per URL-fatal error.

    Returns:
        One count per entry in state.download_urls.
    """
    counts = [0] * len(state.download_urls)

    for err in state.download_errors:
        if (
            state.failures_last_updated is not None
            and err.timestamp < state.failures_last_updated
        ):
            continue
        impact = classify_error(err.error_code)
        if impact is ErrorImpact.URL_FATAL:
            logger.verbose(
                "URL",
                f"Exhausting URL {err.url_idx} due to error {err.error_code.value}",
            )
            counts[err.url_idx] = max(counts[err.url_idx], errors_max)
        elif impact is ErrorImpact.TRANSIENT:
            counts[err.url_idx] += 1

    last = state.last_download_url_idx
    if 0 <= last < len(counts):
        counts[last] = max(counts[last], state.last_download_url_num_errors)

    return counts


def select_download_url(
    state: UpdateState,
    *,
    errors_max: int,
    http_allowed: bool,
    logger: Logger,
) -> tuple[int, int]:
    """Choose the mirror URL to download from.

    Args:
        state: Snapshot of the current payload.
        errors_max: Per-URL error budget; a URL is usable while below it.
        http_allowed: Whether http:// URLs may be used.
        logger: Destination for selection diagnostics.

    Returns:
        A tuple (url_idx, num_errors), where url_idx is -1 if no URL is
            usable.
    """
    urls = state.download_urls
    if not urls:
        return -1, 0

    counts = url_error_counts(state, errors_max=errors_max, logger=logger)
    last = state.last_download_url_idx
    start = (last + 1) % len(urls) if last >= 0 else 0

    for offset in range(len(urls)):
        idx = (start + offset) % len(urls)
        if not is_url_usable(urls[idx], http_allowed=http_allowed):
            logger.debug("URL", f"Skipping URL {idx}: scheme not allowed")
            continue
        if counts[idx] >= errors_max:
            logger.debug(
                "URL", f"Skipping URL {idx}: {counts[idx]} error(s), budget {errors_max}"
            )
            continue
        if last >= 0:
            logger.verbose("URL", f"Advancing from URL {last} to URL {idx}")
        return idx, counts[idx]

    return -1, 0
