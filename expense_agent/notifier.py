"""Summary notification sent to the mailbox owner after a productive run."""

import base64
import logging
from email.mime.text import MIMEText

log = logging.getLogger(__name__)

SHEET_URL = "https://docs.google.com/spreadsheets/d/{sheet_id}"

_BODY_TEMPLATE = """\
Hello,

Your expense agent has completed its scheduled execution.

Summary:
- Successfully processed: {count} transactions.
- Your expenses spreadsheet has been updated.

Link to your sheet: {url}
"""


def build_summary(processed_count, sheet_id):
    """Return (subject, body) for the summary email."""
    subject = f"Expense Update: {processed_count} new transactions processed"
    body = _BODY_TEMPLATE.format(count=processed_count, url=SHEET_URL.format(sheet_id=sheet_id))
    return subject, body


class GmailNotifier:
    def __init__(self, service, sheet_id, user_id="me"):
        self.service = service
        self.sheet_id = sheet_id
        self.user_id = user_id

    def _recipient(self):
        profile = self.service.users().getProfile(userId=self.user_id).execute()
        return profile["emailAddress"]

    def send_summary(self, processed_count):
        recipient = self._recipient()
        subject, body = build_summary(processed_count, self.sheet_id)

        message = MIMEText(body)
        message["to"] = recipient
        message["subject"] = subject
        raw = base64.urlsafe_b64encode(message.as_bytes()).decode("ascii")

        self.service.users().messages().send(userId=self.user_id, body={"raw": raw}).execute()
        log.info("Notification email sent to %s", recipient)
        return recipient
