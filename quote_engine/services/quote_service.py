#quote_engine/services/quote_service.py
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session

from quote_engine.core.clock import as_utc, utcnow
from quote_engine.core.errors import (
    PricingResolutionFailed,
    QuoteLocked,
    QuoteNotDeletable,
    QuoteNotFound,
    ValidationFailed,
)
from quote_engine.db.session import transaction
from quote_engine.models.enums import QuoteStatus
from quote_engine.models.quote import Quote, QuoteLineItem
from quote_engine.models.quote_version import QuoteVersion
from quote_engine.policies.rbac import (
    PERM_OVERRIDE_PRICE,
    PERM_QUOTES_CREATE,
    PERM_QUOTES_DELETE,
    PERM_QUOTES_TRANSITION,
    PERM_QUOTES_UPDATE,
    PERM_QUOTES_VIEW,
    Principal,
    require_permission,
)
from quote_engine.repositories.quotes import QuoteFilters, QuoteLineItemRepository, QuoteRepository
from quote_engine.schemas.common import dec, money, pagination
from quote_engine.schemas.quotes import (
    CalculateRequest,
    LineItemInput,
    QuoteCreate,
    QuoteUpdate,
    serialize_quote,
)
from quote_engine.services.audit_service import AuditAction, AuditEvent, AuditSink
from quote_engine.services.idempotency_service import IdempotencyContext, IdempotencyService
from quote_engine.services.pricing_calculator import (
    LineAmounts,
    calculate_line,
    calculate_quote_totals,
)
from quote_engine.services.pricing_resolver import PricingLineInput, PricingResolver, PricingResult
from quote_engine.services.quote_locking import EDITABLE_STATUSES, check_lock
from quote_engine.services.quote_number import QuoteNumberGenerator
from quote_engine.services.quote_state_machine import apply_transition
from quote_engine.services.quote_versioning import QuoteVersioningService

logger = logging.getLogger(__name__)

_HEADER_FIELDS = (
    "customer_id",
    "project_id",
    "title",
    "description",
    "type",
    "valid_from",
    "valid_until",
    "currency",
    "exchange_rate",
    "discount_type",
    "discount_value",
    "terms_conditions",
    "notes",
    "internal_notes",
    "expires_at",
)

_REQUIRED_HEADER_FIELDS = frozenset({
    "customer_id",
    "title",
    "type",
    "valid_from",
    "valid_until",
    "currency",
    "exchange_rate",
    "discount_value",
})


@dataclass
class MutationResult:
    """
    Outcome of a mutating call. On an idempotent replay `quote` is None and
    `body` is the stored response, returned verbatim.
    """

    status_code: int
    body: Dict[str, Any]
    quote: Optional[Quote] = None
    replayed: bool = False


def _enum_value(v):
    return getattr(v, "value", v)


def _is_retryable_number_conflict(exc: DBAPIError) -> bool:
    if getattr(getattr(exc, "orig", None), "pgcode", None) == "40001":
        return True
    return isinstance(exc, IntegrityError) and "quote_number" in str(exc.orig)


def _audit_values(q: Quote) -> Dict[str, Any]:
    return {
        "quoteNumber": q.quote_number,
        "status": q.status,
        "title": q.title,
        "customerId": q.customer_id,
        "projectId": q.project_id,
        "currency": q.currency,
        "validFrom": q.valid_from,
        "validUntil": q.valid_until,
        "subtotal": q.subtotal,
        "discountAmount": q.discount_amount,
        "taxAmount": q.tax_amount,
        "totalAmount": q.total_amount,
        "lineItemCount": len(q.line_items),
    }


class QuoteService:
    """
    Quote orchestrator.

    Every mutation is one transaction: pricing, totals, number generation,
    line replacement, version snapshot, audit row and the stored idempotent
    response commit together or not at all.
    """

    def __init__(
        self,
        *,
        resolver: PricingResolver,
        numbers: QuoteNumberGenerator,
        versioning: QuoteVersioningService,
        idempotency: IdempotencyService,
        audit: AuditSink,
        max_number_retries: int = 3,
    ):
        self.resolver = resolver
        self.numbers = numbers
        self.versioning = versioning
        self.idempotency = idempotency
        self.audit = audit
        self.max_number_retries = max(1, max_number_retries)

    # ---------------------------
    # READS
    # ---------------------------

    def get_quote_by_id(self, db: Session, *, principal: Principal, quote_id: uuid.UUID) -> Optional[Quote]:
        require_permission(principal, PERM_QUOTES_VIEW)
        return QuoteRepository(db).get(principal.organization_id, quote_id)

    def list_quotes(
        self,
        db: Session,
        *,
        principal: Principal,
        filters: Optional[QuoteFilters] = None,
        sort_by: str = "createdAt",
        sort_order: str = "desc",
        page: int = 1,
        page_size: int = 20,
    ) -> Tuple[List[Quote], Dict[str, Any]]:
        require_permission(principal, PERM_QUOTES_VIEW)
        page = max(1, page)
        page_size = min(max(1, page_size), 100)
        items, total = QuoteRepository(db).list(
            principal.organization_id,
            filters or QuoteFilters(),
            sort_by=sort_by,
            sort_order=sort_order,
            page=page,
            page_size=page_size,
        )
        return items, pagination(page, page_size, total)

    def get_quote_versions(self, db: Session, *, principal: Principal, quote_id: uuid.UUID) -> List[QuoteVersion]:
        require_permission(principal, PERM_QUOTES_VIEW)
        return self.versioning.get_quote_versions(
            db, organization_id=principal.organization_id, quote_id=quote_id
        )

    def get_quote_version(
        self,
        db: Session,
        *,
        principal: Principal,
        quote_id: uuid.UUID,
        version_id: uuid.UUID,
    ) -> QuoteVersion:
        require_permission(principal, PERM_QUOTES_VIEW)
        return self.versioning.get_quote_version(
            db, organization_id=principal.organization_id, quote_id=quote_id, version_id=version_id
        )

    def quote_number_exists(self, db: Session, *, principal: Principal, quote_number: str) -> bool:
        require_permission(principal, PERM_QUOTES_VIEW)
        return self.numbers.quote_number_exists(db, principal.organization_id, quote_number)

    # ---------------------------
    # IDEMPOTENCY
    # ---------------------------

    def _replay(self, db: Session, ctx: Optional[IdempotencyContext]) -> Optional[MutationResult]:
        if ctx is None:
            return None
        found = self.idempotency.check(db, ctx)
        if not found.is_duplicate:
            return None
        logger.info("[quotes] idempotent replay route=%s key=%s", ctx.route, ctx.key)
        return MutationResult(
            status_code=found.response_status or 200,
            body=found.response_body or {},
            replayed=True,
        )

    def _finish(
        self,
        db: Session,
        quote: Quote,
        status_code: int,
        ctx: Optional[IdempotencyContext],
    ) -> MutationResult:
        body = serialize_quote(quote)
        if ctx is not None:
            self.idempotency.store(db, ctx, status=status_code, body=body)
        return MutationResult(status_code=status_code, body=body, quote=quote)

    # ---------------------------
    # PRICING + TOTALS
    # ---------------------------

    def _resolve(
        self,
        db: Session,
        principal: Principal,
        items: Sequence[LineItemInput],
        *,
        currency: str,
        effective_date: date,
    ) -> PricingResult:
        inputs = [
            PricingLineInput(
                line_number=n,
                description=li.description,
                unit_price=li.unit_price,
                sku=li.sku,
                service_category_id=li.service_category_id,
                unit=li.unit,
                tax_rate=li.tax_rate,
            )
            for n, li in enumerate(items, start=1)
        ]
        return self.resolver.resolve_pricing(
            db,
            organization_id=principal.organization_id,
            line_items=inputs,
            has_override_permission=principal.can(PERM_OVERRIDE_PRICE),
            effective_date=effective_date,
            currency=currency,
        )

    def _build_lines(
        self,
        db: Session,
        principal: Principal,
        items: Sequence[LineItemInput],
        *,
        currency: str,
    ) -> List[QuoteLineItem]:
        result = self._resolve(db, principal, items, currency=currency, effective_date=utcnow().date())
        if not result.success:
            raise PricingResolutionFailed(
                "Pricing could not be resolved for one or more line items.",
                errors=[e.as_dict() for e in result.errors],
            )

        now = utcnow()
        lines: List[QuoteLineItem] = []
        problems: List[Dict[str, str]] = []

        for n, li in enumerate(items, start=1):
            resolved = result.for_line(n)
            service_category_id = li.service_category_id or resolved.service_category_id
            rate_card_id = resolved.rate_card_id or li.rate_card_id
            if not service_category_id and not rate_card_id:
                problems.append({
                    "field": f"lineItems[{n - 1}]",
                    "reason": "must reference a service category or a rate card",
                })
                continue

            line = QuoteLineItem(
                line_number=n,
                type=_enum_value(li.type),
                sku=li.sku,
                description=li.description,
                quantity=li.quantity,
                unit_price=resolved.unit_price,
                unit_cost=li.unit_cost,
                unit=resolved.unit,
                tax_inclusive=li.tax_inclusive,
                tax_rate=resolved.tax_rate,
                discount_type=_enum_value(li.discount_type),
                discount_value=li.discount_value,
                percentage_discount=li.percentage_discount,
                fixed_discount=li.fixed_discount,
                service_category_id=service_category_id,
                rate_card_id=rate_card_id,
                pricing_source=resolved.source,
                metadata_json=dict(li.metadata),
                created_at=now,
                updated_at=now,
            )
            self._apply_line_amounts(line, currency)
            lines.append(line)

        if problems:
            raise ValidationFailed("Invalid line items.", errors=problems)
        return lines

    @staticmethod
    def _apply_line_amounts(line: QuoteLineItem, currency: str) -> LineAmounts:
        amounts = calculate_line(
            quantity=line.quantity,
            unit_price=line.unit_price,
            tax_rate=line.tax_rate,
            tax_inclusive=line.tax_inclusive,
            discount_type=line.discount_type,
            discount_value=line.discount_value,
            percentage_discount=line.percentage_discount,
            fixed_discount=line.fixed_discount,
            currency=currency,
        )
        line.subtotal = amounts.subtotal
        line.discount_amount = amounts.discount_amount
        line.tax_amount = amounts.tax_amount
        line.total_amount = amounts.total_amount
        return amounts

    def _apply_totals(self, quote: Quote, lines: Sequence[QuoteLineItem]) -> None:
        amounts = [self._apply_line_amounts(li, quote.currency) for li in lines]
        totals = calculate_quote_totals(
            amounts,
            discount_type=quote.discount_type,
            discount_value=quote.discount_value,
            currency=quote.currency,
        )
        quote.subtotal = totals.subtotal
        quote.discount_amount = totals.discount_amount
        quote.tax_amount = totals.tax_amount
        quote.total_amount = totals.total_amount

    def _emit(
        self,
        db: Session,
        principal: Principal,
        action: str,
        quote: Quote,
        *,
        old: Optional[Dict[str, Any]] = None,
        new: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        request_id: Optional[str] = None,
    ) -> None:
        self.audit.append(
            db,
            AuditEvent(
                action=action,
                entity_type="quote",
                entity_id=str(quote.id),
                organization_id=principal.organization_id,
                user_id=principal.user_id,
                old_values=old,
                new_values=new,
                metadata=metadata or {},
                request_id=request_id,
            ),
        )

    # ---------------------------
    # MUTATIONS
    # ---------------------------

    def create_quote(
        self,
        db: Session,
        *,
        principal: Principal,
        payload: QuoteCreate,
        idempotency: Optional[IdempotencyContext] = None,
        request_id: Optional[str] = None,
    ) -> MutationResult:
        require_permission(principal, PERM_QUOTES_CREATE)

        replay = self._replay(db, idempotency)
        if replay is not None:
            return replay

        attempt = 0
        while True:
            attempt += 1
            try:
                with transaction(db):
                    quote = self._create(db, principal, payload, request_id)
                    result = self._finish(db, quote, 201, idempotency)
                logger.info("[quotes] created id=%s number=%s org=%s", quote.id, quote.quote_number, quote.organization_id)
                return result
            except DBAPIError as exc:
                if attempt >= self.max_number_retries or not _is_retryable_number_conflict(exc):
                    raise
                logger.warning(
                    "[quotes] quote number conflict org=%s attempt=%s, retrying",
                    principal.organization_id,
                    attempt,
                )

    def _create(self, db: Session, principal: Principal, payload: QuoteCreate, request_id: Optional[str]) -> Quote:
        now = utcnow()
        currency = payload.currency
        lines = self._build_lines(db, principal, payload.line_items, currency=currency)

        quote = Quote(
            organization_id=principal.organization_id,
            quote_number=self.numbers.generate(db, principal.organization_id, now=now),
            customer_id=payload.customer_id,
            project_id=payload.project_id,
            title=payload.title,
            description=payload.description,
            status=QuoteStatus.draft.value,
            type=_enum_value(payload.type),
            valid_from=as_utc(payload.valid_from),
            valid_until=as_utc(payload.valid_until),
            currency=currency,
            exchange_rate=payload.exchange_rate,
            discount_type=_enum_value(payload.discount_type),
            discount_value=payload.discount_value,
            terms_conditions=payload.terms_conditions,
            notes=payload.notes,
            internal_notes=payload.internal_notes,
            expires_at=as_utc(payload.expires_at),
            created_by=principal.user_id,
            metadata_json=dict(payload.metadata),
            created_at=now,
            updated_at=now,
        )
        self._apply_totals(quote, lines)
        quote.line_items = lines
        QuoteRepository(db).add(quote)

        self._emit(db, principal, AuditAction.QUOTE_CREATED, quote, new=_audit_values(quote), request_id=request_id)
        return quote

    def update_quote(
        self,
        db: Session,
        *,
        principal: Principal,
        quote_id: uuid.UUID,
        payload: QuoteUpdate,
        idempotency: Optional[IdempotencyContext] = None,
        request_id: Optional[str] = None,
    ) -> MutationResult:
        require_permission(principal, PERM_QUOTES_UPDATE)

        replay = self._replay(db, idempotency)
        if replay is not None:
            return replay

        with transaction(db):
            quote = QuoteRepository(db).get(principal.organization_id, quote_id)
            if quote is None:
                raise QuoteNotFound()

            lock = check_lock(quote.status, principal)
            if lock.is_locked and not lock.can_force_edit:
                raise QuoteLocked(lock.reason)

            old = _audit_values(quote)
            version = None
            if lock.requires_versioning:
                version = self.versioning.create_version(
                    db,
                    quote=quote,
                    created_by=principal.user_id,
                    change_reason=payload.change_reason,
                )

            changes = payload.model_dump(exclude_unset=True, include=set(_HEADER_FIELDS))
            nulls = sorted(n for n, v in changes.items() if v is None and n in _REQUIRED_HEADER_FIELDS)
            if nulls:
                raise ValidationFailed(
                    "Required fields cannot be cleared.",
                    errors=[{"field": n, "reason": "must not be null"} for n in nulls],
                )
            if (
                changes.get("currency") not in (None, quote.currency)
                and payload.line_items is None
                and quote.line_items
            ):
                raise ValidationFailed(
                    "Changing currency requires line items to be re-priced.",
                    errors=[{"field": "lineItems", "reason": "required when currency changes"}],
                )
            for name, value in changes.items():
                if name in ("valid_from", "valid_until", "expires_at"):
                    value = as_utc(value)
                setattr(quote, name, _enum_value(value))
            if payload.metadata is not None:
                quote.metadata_json = dict(payload.metadata)

            if as_utc(quote.valid_until) < as_utc(quote.valid_from):
                raise ValidationFailed(
                    "Invalid validity window.",
                    errors=[{"field": "validUntil", "reason": "must not be before validFrom"}],
                )

            if payload.line_items is not None:
                lines = self._build_lines(db, principal, payload.line_items, currency=quote.currency)
                QuoteLineItemRepository(db).replace_all(quote, lines)
            else:
                # discount changes still re-round every stored line
                lines = list(quote.line_items)

            self._apply_totals(quote, lines)
            quote.updated_at = utcnow()
            db.flush()

            meta = {"forcedEdit": True, "versionNumber": version.version_number} if version else {}
            self._emit(
                db,
                principal,
                AuditAction.QUOTE_UPDATED,
                quote,
                old=old,
                new=_audit_values(quote),
                metadata=meta,
                request_id=request_id,
            )
            result = self._finish(db, quote, 200, idempotency)

        logger.info("[quotes] updated id=%s versioned=%s", quote.id, bool(version))
        return result

    def transition_status(
        self,
        db: Session,
        *,
        principal: Principal,
        quote_id: uuid.UUID,
        status: str,
        notes: Optional[str] = None,
        idempotency: Optional[IdempotencyContext] = None,
        request_id: Optional[str] = None,
    ) -> MutationResult:
        require_permission(principal, PERM_QUOTES_TRANSITION)

        replay = self._replay(db, idempotency)
        if replay is not None:
            return replay

        to_status = _enum_value(status)
        with transaction(db):
            quote = QuoteRepository(db).get(principal.organization_id, quote_id)
            if quote is None:
                raise QuoteNotFound()

            from_status = apply_transition(quote, to_status, actor_id=principal.user_id)
            db.flush()

            self._emit(
                db,
                principal,
                AuditAction.QUOTE_STATUS_TRANSITION,
                quote,
                old={"status": from_status},
                new={"status": to_status},
                metadata={"notes": notes} if notes else {},
                request_id=request_id,
            )
            result = self._finish(db, quote, 200, idempotency)

        logger.info("[quotes] status id=%s %s -> %s", quote.id, from_status, to_status)
        return result

    def delete_quote(
        self,
        db: Session,
        *,
        principal: Principal,
        quote_id: uuid.UUID,
        request_id: Optional[str] = None,
    ) -> None:
        require_permission(principal, PERM_QUOTES_DELETE)

        with transaction(db):
            quote = QuoteRepository(db).get(principal.organization_id, quote_id)
            if quote is None:
                raise QuoteNotFound()
            if quote.status not in EDITABLE_STATUSES:
                raise QuoteNotDeletable(f"Quote cannot be deleted in status {quote.status}.")

            quote.deleted_at = utcnow()
            quote.updated_at = quote.deleted_at
            db.flush()

            self._emit(db, principal, AuditAction.QUOTE_DELETED, quote, old=_audit_values(quote), request_id=request_id)

        logger.info("[quotes] soft-deleted id=%s", quote.id)

    # ---------------------------
    # DRY RUN
    # ---------------------------

    def calculate_preview(self, db: Session, *, principal: Principal, payload: CalculateRequest) -> Dict[str, Any]:
        """
        Resolve + calculate without writing anything. Lines that fail to
        resolve are reported and left out of the totals.
        """
        require_permission(principal, PERM_QUOTES_VIEW)

        currency = payload.currency
        on = (as_utc(payload.effective_date) or utcnow()).date()
        result = self._resolve(db, principal, payload.line_items, currency=currency, effective_date=on)

        lines_out: List[Dict[str, Any]] = []
        amounts: List[LineAmounts] = []
        for n, li in enumerate(payload.line_items, start=1):
            resolved = result.for_line(n)
            if resolved is None:
                continue
            a = calculate_line(
                quantity=li.quantity,
                unit_price=resolved.unit_price,
                tax_rate=resolved.tax_rate,
                tax_inclusive=li.tax_inclusive,
                discount_type=_enum_value(li.discount_type),
                discount_value=li.discount_value,
                percentage_discount=li.percentage_discount,
                fixed_discount=li.fixed_discount,
                currency=currency,
            )
            amounts.append(a)
            lines_out.append({
                "lineNumber": n,
                "description": li.description,
                "quantity": dec(li.quantity),
                "unitPrice": dec(resolved.unit_price),
                "taxRate": dec(resolved.tax_rate),
                "unit": resolved.unit,
                "pricingSource": resolved.source,
                "matchedBy": resolved.matched_by,
                "rateCardId": resolved.rate_card_id,
                "rateCardItemId": resolved.rate_card_item_id,
                "subtotal": money(a.subtotal, currency),
                "discountAmount": money(a.discount_amount, currency),
                "taxAmount": money(a.tax_amount, currency),
                "totalAmount": money(a.total_amount, currency),
            })

        totals = calculate_quote_totals(
            amounts,
            discount_type=_enum_value(payload.discount_type),
            discount_value=payload.discount_value,
            currency=currency,
        )
        return {
            "success": result.success,
            "currency": currency,
            "effectiveDate": on.isoformat(),
            "lineItems": lines_out,
            "totals": {
                "subtotal": money(totals.subtotal, currency),
                "discountAmount": money(totals.discount_amount, currency),
                "taxAmount": money(totals.tax_amount, currency),
                "totalAmount": money(totals.total_amount, currency),
            },
            "errors": [e.as_dict() for e in result.errors],
        }
