"""
Configuration loader – reads the category taxonomy, subject overrides and
mailbox filter from config/category_rules.yml (or CATEGORY_RULES_PATH).

Includes a startup validator that normalizes and deduplicates term lists.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass

import yaml

from expense_agent.errors import ConfigurationError

log = logging.getLogger(__name__)

DEFAULT_RULES_FILE = "category_rules.yml"


def _config_path(filename):
    return os.path.join(os.path.dirname(__file__), 'config', filename)


@dataclass(frozen=True)
class SubjectOverride:
    """A rule keyed by subject substring.

    ``category`` and ``merchant`` are literal values enforced on the
    extracted record; ``merchant_pattern`` is a regex whose first group is
    taken from the body when it matches.  The ``*_hint`` fields are
    instructions passed to the model.
    """
    name: str
    subject_contains: str
    category: str
    merchant: str = ""
    merchant_pattern: str = ""
    merchant_hint: str = ""
    description_hint: str = ""

    def matches(self, subject: str) -> bool:
        return self.subject_contains.lower() in (subject or "").lower()

    def merchant_from_body(self, body: str) -> str | None:
        if not self.merchant_pattern:
            return None
        m = re.search(self.merchant_pattern, body or "")
        if m is None:
            return None
        value = (m.group(1) if m.groups() else m.group(0)).strip()
        # Notification headers repeat the subject text ahead of the entity name
        prefix = self.subject_contains.strip()
        if prefix and value.lower().startswith(prefix.lower() + " "):
            value = value[len(prefix):].strip()
        return value or None


@dataclass(frozen=True)
class CategoryRule:
    name: str
    match_terms: tuple[str, ...] = ()
    keywords: tuple[str, ...] = ()


@dataclass(frozen=True)
class MailboxFilter:
    sender: str
    subject_terms: tuple[str, ...] = ()
    exclude_terms: tuple[str, ...] = ()


@dataclass(frozen=True)
class CategoryTaxonomy:
    categories: tuple[CategoryRule, ...]
    subject_overrides: tuple[SubjectOverride, ...]
    mailbox: MailboxFilter
    source_path: str = ""

    @property
    def category_names(self) -> list[str]:
        return [c.name for c in self.categories]

    def match_override(self, subject: str) -> SubjectOverride | None:
        """Return the first subject override matching *subject*, if any."""
        for rule in self.subject_overrides:
            if rule.matches(subject):
                return rule
        return None


def _dedupe_terms(values, upper=False):
    """Strip, drop blanks and dedupe (case-insensitive) preserving order."""
    seen = set()
    out = []
    for raw in values or []:
        term = str(raw).strip()
        if not term:
            continue
        if upper:
            term = term.upper()
        key = term.lower()
        if key in seen:
            continue
        seen.add(key)
        out.append(term)
    return tuple(out)


def _require(mapping, key, where):
    value = mapping.get(key) if isinstance(mapping, dict) else None
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ConfigurationError(f"{where}: missing required key '{key}'")
    return value


def _parse_taxonomy(data, source_path=""):
    if not isinstance(data, dict):
        raise ConfigurationError(f"{source_path}: expected a mapping at top level")

    categories = []
    for idx, entry in enumerate(data.get("categories") or []):
        where = f"categories[{idx}]"
        name = str(_require(entry, "name", where)).strip()
        terms = _dedupe_terms(entry.get("match_terms"), upper=True)
        keywords = _dedupe_terms(entry.get("keywords"), upper=True)
        if not terms and not keywords:
            raise ConfigurationError(f"{where} ({name}): needs match_terms or keywords")
        categories.append(CategoryRule(name=name, match_terms=terms, keywords=keywords))
    if not categories:
        raise ConfigurationError(f"{source_path}: 'categories' must not be empty")

    overrides = []
    for idx, entry in enumerate(data.get("subject_overrides") or []):
        where = f"subject_overrides[{idx}]"
        rule = SubjectOverride(
            name=str(entry.get("name") or f"override_{idx}").strip(),
            subject_contains=str(_require(entry, "subject_contains", where)).strip(),
            category=str(_require(entry, "category", where)).strip(),
            merchant=str(entry.get("merchant") or "").strip(),
            merchant_pattern=str(entry.get("merchant_pattern") or "").strip(),
            merchant_hint=str(entry.get("merchant_hint") or "").strip(),
            description_hint=str(_require(entry, "description_hint", where)).strip(),
        )
        if not (rule.merchant or rule.merchant_hint):
            raise ConfigurationError(f"{where} ({rule.name}): needs merchant or merchant_hint")
        if rule.merchant_pattern:
            try:
                re.compile(rule.merchant_pattern)
            except re.error as exc:
                raise ConfigurationError(f"{where} ({rule.name}): bad merchant_pattern: {exc}") from exc
        overrides.append(rule)

    mailbox_raw = _require(data, "mailbox", source_path or "rules")
    mailbox = MailboxFilter(
        sender=str(_require(mailbox_raw, "sender", "mailbox")).strip(),
        subject_terms=_dedupe_terms(mailbox_raw.get("subject_terms")),
        exclude_terms=_dedupe_terms(mailbox_raw.get("exclude_terms")),
    )
    if not mailbox.subject_terms:
        raise ConfigurationError("mailbox: 'subject_terms' must not be empty")

    return CategoryTaxonomy(
        categories=tuple(categories),
        subject_overrides=tuple(overrides),
        mailbox=mailbox,
        source_path=source_path,
    )


def load_category_rules(path=None) -> CategoryTaxonomy:
    """Load and validate the category rules YAML.

    *path* defaults to the bundled config/category_rules.yml.
    """
    path = path or _config_path(DEFAULT_RULES_FILE)
    if not os.path.exists(path):
        raise ConfigurationError(f"Category rules file not found: {path}")
    with open(path, 'r', encoding='utf-8') as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Cannot parse {path}: {exc}") from exc
    return _parse_taxonomy(data, source_path=path)


def validate_startup_config(path=None) -> CategoryTaxonomy:
    """Run at startup: load, normalize, dedupe rules, log counts + top entries."""
    taxonomy = load_category_rules(path)

    log.info("=== Config Validation ===")
    log.info("rules file: %s", taxonomy.source_path)
    log.info("categories: %d | %s", len(taxonomy.categories), taxonomy.category_names)
    log.info("subject overrides: %d | %s", len(taxonomy.subject_overrides),
             [o.subject_contains for o in taxonomy.subject_overrides])
    log.info("mailbox sender=%s subjects=%d excludes=%d",
             taxonomy.mailbox.sender, len(taxonomy.mailbox.subject_terms),
             len(taxonomy.mailbox.exclude_terms))
    return taxonomy
