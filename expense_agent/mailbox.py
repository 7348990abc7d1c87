"""
Gmail mailbox adapter – candidate discovery and processed-label handling.

Key points:
  * Search query is built from the taxonomy's mailbox block and always
    excludes threads already carrying the processed label.
  * Labels are resolved by name (case-insensitive) and created on demand;
    repeated calls are no-ops.
  * Plain-text body comes from the first text/plain part (recursive),
    with stripped HTML as a fallback.
  * API errors are not caught here: a failing search or label call ends
    the run.
"""

import base64
import logging
import os
import re
from datetime import datetime, timezone
from html.parser import HTMLParser

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build

from expense_agent.models import CandidateThread, IngestionCandidate

log = logging.getLogger(__name__)

SCOPES = [
    "https://www.googleapis.com/auth/gmail.modify",
    "https://www.googleapis.com/auth/gmail.send",
]


# ------------------------------------------------------------------
# Auth
# ------------------------------------------------------------------

def load_gmail_credentials(token_path, client_secrets_path):
    """Return user credentials, refreshing or bootstrapping the token file."""
    creds = None
    if os.path.exists(token_path):
        creds = Credentials.from_authorized_user_file(token_path, SCOPES)

    if creds and creds.valid:
        return creds

    if creds and creds.expired and creds.refresh_token:
        log.info("Refreshing Gmail token %s", token_path)
        creds.refresh(Request())
    else:
        log.info("No usable Gmail token; starting OAuth flow with %s", client_secrets_path)
        flow = InstalledAppFlow.from_client_secrets_file(client_secrets_path, SCOPES)
        creds = flow.run_local_server(port=0)

    with open(token_path, "w", encoding="utf-8") as token:
        token.write(creds.to_json())
    return creds


def build_gmail_service(token_path, client_secrets_path):
    creds = load_gmail_credentials(token_path, client_secrets_path)
    return build("gmail", "v1", credentials=creds, cache_discovery=False)


# ------------------------------------------------------------------
# Query + payload helpers
# ------------------------------------------------------------------

def _label_query_name(label_name):
    # Gmail search syntax uses hyphens for spaces in label names
    return re.sub(r"\s+", "-", label_name.strip())


def build_search_query(mailbox_filter, processed_label):
    """Compose the Gmail search expression for unprocessed candidates."""
    parts = []
    if mailbox_filter.sender:
        parts.append(f"from:{mailbox_filter.sender}")
    subjects = " OR ".join(f'subject:"{term}"' for term in mailbox_filter.subject_terms)
    if subjects:
        parts.append(f"({subjects})")
    for term in mailbox_filter.exclude_terms:
        parts.append(f'-"{term}"')
    parts.append(f"-label:{_label_query_name(processed_label)}")
    return " ".join(parts)


class _HTMLStripper(HTMLParser):
    def __init__(self) -> None:
        super().__init__()
        self._parts: list[str] = []

    def handle_data(self, data: str) -> None:
        if data:
            self._parts.append(data)

    def get_text(self) -> str:
        return "".join(self._parts)


def _html_to_text(html: str) -> str:
    if not html:
        return ""
    stripper = _HTMLStripper()
    stripper.feed(html)
    return re.sub(r"\s+", " ", stripper.get_text()).strip()


def _decode(data: str) -> str:
    # Gmail may omit base64 padding
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8", errors="replace")


def extract_bodies(payload: dict) -> tuple[str, str]:
    """Return (plain_text, html) from a Gmail message payload."""
    body_text = ""
    body_html = ""

    def walk(part):
        nonlocal body_text, body_html
        mime_type = part.get("mimeType", "")
        data = (part.get("body") or {}).get("data")
        if data:
            if mime_type == "text/plain" and not body_text:
                body_text = _decode(data)
            elif mime_type == "text/html" and not body_html:
                body_html = _decode(data)
        for child in part.get("parts") or []:
            walk(child)

    walk(payload or {})
    return body_text, body_html


def plain_text_body(payload: dict) -> str:
    text, html = extract_bodies(payload)
    return text if text.strip() else _html_to_text(html)


def _header(payload, name):
    for h in (payload or {}).get("headers") or []:
        if (h.get("name") or "").lower() == name.lower():
            return h.get("value") or ""
    return ""


def message_to_candidate(msg: dict) -> IngestionCandidate:
    payload = msg.get("payload") or {}
    internal_ms = int(msg.get("internalDate") or 0)
    return IngestionCandidate(
        id=msg["id"],
        thread_id=msg.get("threadId", ""),
        subject=_header(payload, "Subject"),
        date=datetime.fromtimestamp(internal_ms / 1000.0, tz=timezone.utc),
        plain_text_body=plain_text_body(payload),
    )


# ------------------------------------------------------------------
# Mailbox
# ------------------------------------------------------------------

class GmailMailbox:
    """Message source + label store backed by the Gmail API."""

    def __init__(self, service, user_id="me"):
        self.service = service
        self.user_id = user_id
        self._label_ids: dict[str, str] = {}

    def _find_label_id(self, name):
        resp = self.service.users().labels().list(userId=self.user_id).execute()
        for label in resp.get("labels", []):
            if (label.get("name") or "").lower() == name.lower():
                return label["id"]
        return None

    def ensure_label(self, name):
        """Return the id of label *name*, creating it if absent."""
        key = name.strip()
        if not key:
            raise ValueError("Label name must be a non-empty string.")
        if key.lower() in self._label_ids:
            return self._label_ids[key.lower()]

        label_id = self._find_label_id(key)
        if label_id is None:
            body = {
                "name": key,
                "labelListVisibility": "labelShow",
                "messageListVisibility": "show",
            }
            created = self.service.users().labels().create(userId=self.user_id, body=body).execute()
            label_id = created["id"]
            log.info("Created label '%s' (%s)", key, label_id)
        self._label_ids[key.lower()] = label_id
        return label_id

    def search_threads(self, query, max_results) -> list[CandidateThread]:
        log.info("Mailbox query (max %d): %s", max_results, query)
        resp = self.service.users().threads().list(
            userId=self.user_id, q=query, maxResults=max_results,
        ).execute()

        threads = []
        for stub in (resp.get("threads") or [])[:max_results]:
            full = self.service.users().threads().get(
                userId=self.user_id, id=stub["id"], format="full",
            ).execute()
            messages = [message_to_candidate(m) for m in full.get("messages") or []]
            threads.append(CandidateThread(id=stub["id"], messages=messages))
        log.info("Mailbox returned %d candidate threads", len(threads))
        return threads

    def add_label(self, thread_id, label_name):
        label_id = self.ensure_label(label_name)
        self.service.users().threads().modify(
            userId=self.user_id, id=thread_id, body={"addLabelIds": [label_id]},
        ).execute()
        log.debug("Labeled thread %s with '%s'", thread_id, label_name)
