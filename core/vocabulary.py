"""
core/vocabulary.py
------------------
Immutable, versioned vocabularies for column classification and entity
type mapping.

Design Decisions:
    * Vocabularies are frozen dataclasses of frozensets and tuples, passed
      into the analyzer and mapper at construction time. Two analyses can
      run side by side with different vocabularies without sharing state.
    * Industry presets extend the generic vocabulary through
      :meth:`Vocabulary.with_patterns` which returns a new instance.
    * All matching happens on normalised names (lower case, alphanumerics
      only) so ``Sales_Order``, ``SALESORDER`` and ``salesOrder`` agree.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, replace

from models.mapping import EntityCategory
from models.schema import ColumnClassification, TablePurpose

_CAMEL_RE = re.compile(r"[A-Z]+(?=[A-Z][a-z])|[A-Z]?[a-z]+|[A-Z]+")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]")
_SNAKE_BOUNDARY_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")
_SNAKE_JUNK_RE = re.compile(r"[^a-z0-9]+")


def normalize(name: str) -> str:
    """``"Sales_Order"`` → ``"salesorder"``."""
    return _NON_ALNUM_RE.sub("", name.lower())


def tokenize(name: str) -> tuple[str, ...]:
    """
    Split an identifier into lower-case word tokens.

    Examples::

        tokenize("CardCode")      → ("card", "code")
        tokenize("customer_id")   → ("customer", "id")
        tokenize("HTTPStatus2")   → ("http", "status")
    """
    return tuple(m.group(0).lower() for m in _CAMEL_RE.finditer(name))


def snake_case(name: str) -> str:
    """``"CardCode"`` → ``"card_code"``, ``"Phone1"`` → ``"phone1"``."""
    spaced = _SNAKE_BOUNDARY_RE.sub("_", name)
    return _SNAKE_JUNK_RE.sub("_", spaced.lower()).strip("_") or name.lower()


@dataclass(frozen=True)
class EntityPattern:
    """Recognition pattern for one universal entity type."""
    entity_type: str
    category: EntityCategory
    table_names: frozenset[str]
    column_patterns: frozenset[str]
    parents: frozenset[str] = frozenset()
    industry: str | None = None

    @property
    def is_industry_specific(self) -> bool:
        return self.industry is not None


def _pattern(
    entity_type: str,
    category: EntityCategory,
    tables: str,
    columns: str,
    parents: str = "",
    industry: str | None = None,
) -> EntityPattern:
    return EntityPattern(
        entity_type=entity_type,
        category=category,
        table_names=frozenset(normalize(t) for t in tables.split()),
        column_patterns=frozenset(normalize(c) for c in columns.split()),
        parents=frozenset(parents.split()),
        industry=industry,
    )


@dataclass(frozen=True)
class Vocabulary:
    version: str
    column_keywords: tuple[tuple[ColumnClassification, frozenset[str]], ...]
    entity_patterns: tuple[EntityPattern, ...]
    industry_patterns: tuple[tuple[str, tuple[EntityPattern, ...]], ...] = ()
    table_purpose_keywords: tuple[tuple[TablePurpose, frozenset[str]], ...] = ()
    null_sentinels: frozenset[str] = frozenset()
    audit_columns: frozenset[str] = frozenset()
    low_cardinality_tokens: frozenset[str] = frozenset()
    hierarchy_tokens: frozenset[str] = frozenset()

    @property
    def industries(self) -> tuple[str, ...]:
        return tuple(name for name, _ in self.industry_patterns)

    def patterns_for(self, industry: str | None = None) -> tuple[EntityPattern, ...]:
        """Generic patterns followed by the patterns of *industry* (if known)."""
        if industry is None:
            return self.entity_patterns
        key = normalize(industry)
        for name, patterns in self.industry_patterns:
            if normalize(name) == key:
                return self.entity_patterns + patterns
        return self.entity_patterns

    def pattern(self, entity_type: str) -> EntityPattern | None:
        for p in self.entity_patterns:
            if p.entity_type == entity_type:
                return p
        for _, patterns in self.industry_patterns:
            for p in patterns:
                if p.entity_type == entity_type:
                    return p
        return None

    def keywords_for(self, classification: ColumnClassification) -> frozenset[str]:
        for cls, words in self.column_keywords:
            if cls is classification:
                return words
        return frozenset()

    def with_patterns(self, *patterns: EntityPattern, version: str | None = None) -> "Vocabulary":
        """Return a copy with *patterns* added (or replacing same-named types)."""
        replaced = {p.entity_type for p in patterns}
        kept = tuple(p for p in self.entity_patterns if p.entity_type not in replaced)
        return replace(
            self,
            entity_patterns=kept + tuple(patterns),
            version=version or f"{self.version}+custom",
        )


# ---------------------------------------------------------------------------
# Column classification keywords (matched against name tokens)
# ---------------------------------------------------------------------------
_COLUMN_KEYWORDS: tuple[tuple[ColumnClassification, frozenset[str]], ...] = (
    (ColumnClassification.FLAG, frozenset(
        "is has flag active inactive enabled disabled valid deleted frozen yn "
        "locked blocked approved canceled cancelled".split()
    )),
    (ColumnClassification.DATE, frozenset(
        "date dt time timestamp created updated modified at day "
        "birthday dob".split()
    )),
    (ColumnClassification.AMOUNT, frozenset(
        "amount amt price cost total balance qty quantity value rate sum tax "
        "discount vat fee salary credit debit".split()
    )),
    (ColumnClassification.IDENTIFIER, frozenset(
        "id code key no num number guid uuid sku entry barcode".split()
    )),
    (ColumnClassification.NAME, frozenset("name title label nm".split())),
    (ColumnClassification.DESCRIPTION, frozenset(
        "desc description descr note notes comment comments remark remarks "
        "memo text details".split()
    )),
    (ColumnClassification.REFERENCE, frozenset("ref reference fk by".split())),
)


# ---------------------------------------------------------------------------
# Generic entity patterns (declaration order breaks remaining ties)
# ---------------------------------------------------------------------------
_M = EntityCategory.MASTER
_T = EntityCategory.TRANSACTIONAL
_C = EntityCategory.CONFIGURATION

_GENERIC_PATTERNS: tuple[EntityPattern, ...] = (
    _pattern("customer", _M,
             "customer customers client clients cust ocrd buyer buyers",
             "customer_id customer_code customer_name cust_id client_id client_code "
             "client_name account_number CardCode CardName CardType credit_limit "
             "CreditLine billing_address"),
    _pattern("supplier", _M,
             "supplier suppliers vendor vendors provider providers ocrd vend",
             "supplier_id supplier_code supplier_name vendor_id vendor_code "
             "vendor_name payment_terms"),
    _pattern("product", _M,
             "product products item items catalog sku oitm itm article articles",
             "product_id product_code product_name item_id ItemCode ItemName sku "
             "barcode CodeBars unit_price list_price uom InvntItem"),
    _pattern("employee", _M,
             "employee employees staff ohem personnel worker workers",
             "employee_id empID employee_code first_name last_name firstName "
             "lastName hire_date startDate job_title department_id"),
    _pattern("contact", _M,
             "contact contacts ocpr person persons",
             "contact_id contact_name CntctCode email phone mobile Cellolar E_MailL",
             parents="customer supplier"),
    _pattern("gl_account", _M,
             "account accounts gl_account chart_of_accounts oact ledger_account",
             "AcctCode AcctName account_code account_name account_type gl_code "
             "FatherNum"),
    _pattern("currency", _C,
             "currency currencies ocrn",
             "currency_code CurrCode iso_code exchange_rate symbol"),
    _pattern("warehouse", _M,
             "warehouse warehouses owhs",
             "WhsCode WhsName warehouse_code warehouse_name"),
    _pattern("sales_order", _T,
             "order orders sales_order sales_orders ordr so_header",
             "order_id order_number order_date DocEntry DocNum DocDate DocTotal "
             "DocDueDate ship_date order_total customer_id",
             parents="customer employee"),
    _pattern("sales_order_line", _T,
             "order_line order_lines order_items order_item order_detail "
             "order_details line_items rdr1",
             "line_id LineNum line_number quantity unit_price line_total LineTotal "
             "order_id",
             parents="sales_order product"),
    _pattern("purchase_order", _T,
             "purchase_order purchase_orders opor po_header",
             "po_number po_id purchase_order_id supplier_id vendor_id DocEntry "
             "DocDate",
             parents="supplier"),
    _pattern("invoice", _T,
             "invoice invoices oinv opch bill bills",
             "invoice_id invoice_number invoice_date due_date DocEntry DocTotal "
             "VatSum amount_due",
             parents="customer supplier sales_order"),
    _pattern("payment", _T,
             "payment payments orct ovpm receipt receipts",
             "payment_id payment_date payment_method amount_paid CashSum "
             "TrsfrSum",
             parents="customer supplier invoice"),
    _pattern("journal_entry", _T,
             "journal journal_entry journal_entries ojdt jdt1 gl_entry gl_entries",
             "TransId journal_id debit credit posting_date RefDate",
             parents="gl_account"),
)

_INDUSTRY_PATTERNS: tuple[tuple[str, tuple[EntityPattern, ...]], ...] = (
    ("healthcare", (
        _pattern("patient", _M, "patient patients",
                 "patient_id mrn medical_record_number date_of_birth dob "
                 "insurance_id", industry="healthcare"),
        _pattern("appointment", _T, "appointment appointments visit visits",
                 "appointment_id appointment_date provider_id patient_id "
                 "visit_type", parents="patient", industry="healthcare"),
        _pattern("practitioner", _M, "practitioner practitioners doctor doctors",
                 "practitioner_id npi license_number specialty",
                 industry="healthcare"),
    )),
    ("manufacturing", (
        _pattern("bill_of_materials", _M, "bom boms bill_of_materials oitt",
                 "bom_id component_id parent_item quantity_per",
                 parents="product", industry="manufacturing"),
        _pattern("work_order", _T, "work_order work_orders owor production_order",
                 "work_order_id planned_qty start_date due_date",
                 parents="product", industry="manufacturing"),
    )),
    ("retail", (
        _pattern("store", _M, "store stores outlet outlets branch branches",
                 "store_id store_code store_name region", industry="retail"),
        _pattern("loyalty_member", _M, "loyalty loyalty_members members",
                 "member_id loyalty_number points tier",
                 parents="customer", industry="retail"),
    )),
    ("restaurant", (
        _pattern("menu_item", _M, "menu menu_items dishes dish",
                 "menu_item_id dish_name course calories",
                 industry="restaurant"),
        _pattern("reservation", _T, "reservation reservations booking bookings",
                 "reservation_id party_size reservation_time table_id",
                 parents="customer", industry="restaurant"),
    )),
    ("professional_services", (
        _pattern("project", _M, "project projects engagement engagements",
                 "project_id project_code project_name budget start_date",
                 parents="customer", industry="professional_services"),
        _pattern("timesheet", _T, "timesheet timesheets time_entries",
                 "timesheet_id hours billable work_date",
                 parents="employee project", industry="professional_services"),
    )),
)

_TABLE_PURPOSE_KEYWORDS: tuple[tuple[TablePurpose, frozenset[str]], ...] = (
    (TablePurpose.AUDIT, frozenset("log logs audit history hist changelog trail".split())),
    (TablePurpose.CONFIGURATION, frozenset(
        "config configuration setting settings parameter parameters param "
        "preference preferences option options".split()
    )),
    (TablePurpose.LOOKUP, frozenset("type types status statuses category categories lookup".split())),
)


DEFAULT_VOCABULARY = Vocabulary(
    version="2026.1",
    column_keywords=_COLUMN_KEYWORDS,
    entity_patterns=_GENERIC_PATTERNS,
    industry_patterns=_INDUSTRY_PATTERNS,
    table_purpose_keywords=_TABLE_PURPOSE_KEYWORDS,
    null_sentinels=frozenset({"", "null", "n/a", "na", "none", "0000-00-00", "-"}),
    audit_columns=frozenset(normalize(c) for c in (
        "created_at updated_at created_by updated_by create_date update_date "
        "modified_at modified_by created_on updated_on CreateDate UpdateDate "
        "UserSign UserSign2 row_version".split()
    )),
    low_cardinality_tokens=frozenset(
        "status type category group class kind level tier segment region country "
        "currency language lang uom unit".split()
    ),
    hierarchy_tokens=frozenset("parent manager super father reports boss".split()),
)
