"""
decoders.py - Typed decoders for contract return values

Contract reads come back either as a positional tuple (ABI order) or as a
mapping keyed by the Solidity field names, depending on the client. Each
entity has exactly one decoder here, applied once at the read boundary,
producing the canonical frozen snapshot from core.py. Nothing downstream
inspects raw shapes.

Field tables list (attribute, solidity_name, converter) in ABI order.
"""

from __future__ import annotations

from typing import Any, Callable, Mapping, Sequence, Tuple, Type, TypeVar

from .core import (
    DecodeError,
    FiatLenderOffer, FiatLenderOfferStatus, FiatLoan, FiatLoanStatus,
    LenderOffer, Loan, LoanExtension, LoanRequest, LoanRequestStatus, LoanStatus,
    PriceQuote,
)

T = TypeVar("T")

FieldSpec = Tuple[str, str, Callable[[Any], Any]]


def _uint(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"expected unsigned int, got {type(value).__name__}")
    if value < 0:
        raise ValueError(f"expected unsigned int, got {value}")
    return value


def _address(value: Any) -> str:
    if not isinstance(value, str):
        raise TypeError(f"expected address string, got {type(value).__name__}")
    return value


def _text(value: Any) -> str:
    if isinstance(value, bytes):
        return "0x" + value.hex()
    return str(value)


def _bool(value: Any) -> bool:
    if not isinstance(value, bool):
        raise TypeError(f"expected bool, got {type(value).__name__}")
    return value


def _enum(enum_type):
    def convert(value: Any):
        return enum_type(_uint(value))
    return convert


LOAN_FIELDS: Tuple[FieldSpec, ...] = (
    ("loan_id", "loanId", _uint),
    ("request_id", "requestId", _uint),
    ("borrower", "borrower", _address),
    ("lender", "lender", _address),
    ("collateral_asset", "collateralAsset", _address),
    ("collateral_amount", "collateralAmount", _uint),
    ("collateral_released", "collateralReleased", _uint),
    ("borrow_asset", "borrowAsset", _address),
    ("principal_amount", "principalAmount", _uint),
    ("interest_rate", "interestRate", _uint),
    ("duration", "duration", _uint),
    ("start_time", "startTime", _uint),
    ("due_date", "dueDate", _uint),
    ("amount_repaid", "amountRepaid", _uint),
    ("status", "status", _enum(LoanStatus)),
    ("last_interest_update", "lastInterestUpdate", _uint),
    ("grace_period_end", "gracePeriodEnd", _uint),
    ("is_cross_chain", "isCrossChain", _bool),
    ("source_chain_id", "sourceChainId", _uint),
    ("target_chain_id", "targetChainId", _uint),
    ("remote_chain_loan_id", "remoteChainLoanId", _uint),
)

LOAN_REQUEST_FIELDS: Tuple[FieldSpec, ...] = (
    ("request_id", "requestId", _uint),
    ("borrower", "borrower", _address),
    ("collateral_amount", "collateralAmount", _uint),
    ("collateral_token", "collateralToken", _address),
    ("borrow_asset", "borrowAsset", _address),
    ("borrow_amount", "borrowAmount", _uint),
    ("duration", "duration", _uint),
    ("max_interest_rate", "maxInterestRate", _uint),
    ("interest_rate", "interestRate", _uint),
    ("created_at", "createdAt", _uint),
    ("expire_at", "expireAt", _uint),
    ("status", "status", _enum(LoanRequestStatus)),
)

LENDER_OFFER_FIELDS: Tuple[FieldSpec, ...] = (
    ("offer_id", "offerId", _uint),
    ("lender", "lender", _address),
    ("lend_asset", "lendAsset", _address),
    ("lend_amount", "lendAmount", _uint),
    ("remaining_amount", "remainingAmount", _uint),
    ("borrowed_amount", "borrowedAmount", _uint),
    ("required_collateral_asset", "requiredCollateralAsset", _address),
    ("min_collateral_amount", "minCollateralAmount", _uint),
    ("duration", "duration", _uint),
    ("interest_rate", "interestRate", _uint),
    ("created_at", "createdAt", _uint),
    ("expire_at", "expireAt", _uint),
    ("status", "status", _enum(LoanRequestStatus)),
)

FIAT_LOAN_FIELDS: Tuple[FieldSpec, ...] = (
    ("loan_id", "loanId", _uint),
    ("borrower", "borrower", _address),
    ("supplier", "supplier", _address),
    ("collateral_asset", "collateralAsset", _address),
    ("collateral_amount", "collateralAmount", _uint),
    ("fiat_amount_cents", "fiatAmountCents", _uint),
    ("currency", "currency", _text),
    ("interest_rate", "interestRate", _uint),
    ("duration", "duration", _uint),
    ("status", "status", _enum(FiatLoanStatus)),
    ("created_at", "createdAt", _uint),
    ("activated_at", "activatedAt", _uint),
    ("due_date", "dueDate", _uint),
    ("grace_period_end", "gracePeriodEnd", _uint),
    ("claimable_amount_cents", "claimableAmountCents", _uint),
    ("funds_withdrawn", "fundsWithdrawn", _bool),
    ("repayment_deposit_id", "repaymentDepositId", _text),
    ("exchange_rate_at_creation", "exchangeRateAtCreation", _uint),
)

FIAT_LENDER_OFFER_FIELDS: Tuple[FieldSpec, ...] = (
    ("offer_id", "offerId", _uint),
    ("lender", "lender", _address),
    ("fiat_amount_cents", "fiatAmountCents", _uint),
    ("remaining_amount_cents", "remainingAmountCents", _uint),
    ("borrowed_amount_cents", "borrowedAmountCents", _uint),
    ("currency", "currency", _text),
    ("min_collateral_value_usd", "minCollateralValueUSD", _uint),
    ("interest_rate", "interestRate", _uint),
    ("duration", "duration", _uint),
    ("created_at", "createdAt", _uint),
    ("expire_at", "expireAt", _uint),
    ("status", "status", _enum(FiatLenderOfferStatus)),
    ("exchange_rate_at_creation", "exchangeRateAtCreation", _uint),
)

LOAN_EXTENSION_FIELDS: Tuple[FieldSpec, ...] = (
    ("additional_duration", "additionalDuration", _uint),
    ("requested", "requested", _bool),
    ("approved", "approved", _bool),
)


def _decode(cls: Type[T], raw: Any, fields: Sequence[FieldSpec], **extra: Any) -> T:
    """
    Decode a tuple or mapping into `cls`.

    Positional input may omit trailing fields that carry dataclass defaults
    (older contract versions return shorter tuples).
    """
    values = {}
    try:
        if isinstance(raw, Mapping):
            for attr, name, convert in fields:
                if name in raw:
                    values[attr] = convert(raw[name])
                elif attr in raw:
                    values[attr] = convert(raw[attr])
        elif isinstance(raw, (tuple, list)):
            if len(raw) > len(fields):
                raise ValueError(f"expected at most {len(fields)} fields, got {len(raw)}")
            for (attr, _name, convert), value in zip(fields, raw):
                values[attr] = convert(value)
        else:
            raise TypeError(f"expected tuple or mapping, got {type(raw).__name__}")
        values.update(extra)
        return cls(**values)
    except (TypeError, ValueError) as exc:
        raise DecodeError(f"Cannot decode {cls.__name__}: {exc}") from exc


def decode_loan(raw: Any) -> Loan:
    return _decode(Loan, raw, LOAN_FIELDS)


def decode_loan_request(raw: Any) -> LoanRequest:
    return _decode(LoanRequest, raw, LOAN_REQUEST_FIELDS)


def decode_lender_offer(raw: Any) -> LenderOffer:
    return _decode(LenderOffer, raw, LENDER_OFFER_FIELDS)


def decode_fiat_loan(raw: Any) -> FiatLoan:
    return _decode(FiatLoan, raw, FIAT_LOAN_FIELDS)


def decode_fiat_lender_offer(raw: Any) -> FiatLenderOffer:
    return _decode(FiatLenderOffer, raw, FIAT_LENDER_OFFER_FIELDS)


def decode_loan_extension(loan_id: int, raw: Any) -> LoanExtension:
    """Extensions are keyed by loan id, which the contract does not echo back."""
    return _decode(LoanExtension, raw, LOAN_EXTENSION_FIELDS, loan_id=loan_id)


def decode_price_round(asset: str, feed_address: str, raw: Any) -> PriceQuote:
    """
    Decode a latestRoundData() answer.

    (roundId, answer, startedAt, updatedAt, answeredInRound): price is
    index 1, last update index 3. A negative answer is a broken feed and
    decodes to price 0, which the oracle adapter rejects.
    """
    try:
        if isinstance(raw, Mapping):
            answer, updated_at = raw["answer"], raw["updatedAt"]
        else:
            answer, updated_at = raw[1], raw[3]
        return PriceQuote(
            asset=asset,
            price=max(0, int(answer)),
            feed_address=feed_address,
            last_updated_at=_uint(updated_at),
        )
    except (KeyError, IndexError, TypeError, ValueError) as exc:
        raise DecodeError(f"Cannot decode price round for {asset}: {exc}") from exc
