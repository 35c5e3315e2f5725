"""
revert_reasons.py - Decode failed simulations into user-facing messages

Decoding priority:
1. Structured custom error name (e.g. "LoanIsStillHealthy")
2. 4-byte error selector (from the result, or found in the raw text)
3. Raw revert string, mapped through known require() reasons
4. Generic message

Unknown custom error names are not dropped: a PascalCase name is turned
into a sentence ("LoanTooNew" -> "Loan too new") so the user still gets
something specific.
"""

from __future__ import annotations

import re
from typing import Mapping, Optional

from .core import SimulationResult

GENERIC_SIMULATION_FAILURE = "Transaction simulation failed"

ERROR_SELECTOR_MESSAGES: Mapping[str, str] = {
    "0xe450d38c": "Insufficient token balance. Please check your wallet balance.",
    "0xfb8f41b2": "Insufficient allowance. Please approve the token first.",
    "0x13be252b": "Caller is not authorized.",
    "0x118cdaa7": "Owner is not authorized.",
    "0x4e487b71": "Panic error (arithmetic overflow/underflow).",
}

ERROR_NAME_MESSAGES: Mapping[str, str] = {
    # Token
    "ERC20InsufficientBalance": "Insufficient token balance. You need more tokens to complete this transaction.",
    "ERC20InsufficientAllowance": "Insufficient allowance. Please approve the token first.",
    "SafeERC20FailedOperation": "Token transfer failed. Please check your balance and try again.",
    # Access
    "OwnableUnauthorizedAccount": "You are not authorized to perform this action.",
    "AccessControlUnauthorizedAccount": "You do not have the required role to perform this action.",
    "EnforcedPause": "The contract is currently paused for maintenance.",
    "ReentrancyGuardReentrantCall": "Transaction blocked due to reentrancy protection.",
    # Configuration and pricing
    "InvalidAmount": "Invalid amount specified.",
    "InvalidDuration": "Invalid loan duration.",
    "InvalidInterestRate": "Interest rate outside allowed range.",
    "AssetNotEnabled": "This asset is not enabled for lending.",
    "AssetNotSupported": "This collateral asset is not supported. Please select a different token.",
    "CollateralNotSupported": "This collateral token is not supported.",
    "BorrowAssetNotSupported": "This borrow asset is not supported by the platform.",
    "CurrencyNotSupported": "The selected currency is not supported.",
    "LTVExceeded": "Borrow amount exceeds maximum LTV for this collateral.",
    "LTVExceedsMaximum": "The loan-to-value ratio exceeds the maximum allowed for this collateral.",
    "LTVTooHigh": "The loan-to-value ratio is too high. Please provide more collateral.",
    "PriceDataStale": "Price data is stale. Please wait for price feeds to be refreshed.",
    "PriceFeedNotSet": "Price feed not configured for this token.",
    "InvalidPrice": "Invalid price returned from oracle.",
    # Requests and offers
    "CannotFundOwnRequest": "You cannot fund your own loan request.",
    "CannotAcceptOwnOffer": "You cannot accept your own lending offer.",
    "RequestExpired": "This loan request has expired.",
    "RequestNotPending": "This request is not pending.",
    "OfferNotAvailable": "This offer is no longer available.",
    "OfferExpired": "This offer has expired and can no longer be accepted.",
    "InsufficientOfferBalance": "The requested borrow amount exceeds the remaining offer balance.",
    "InsufficientCollateral": "Insufficient collateral provided. Please increase your collateral amount.",
    # Loans
    "LoanNotFound": "Loan not found.",
    "LoanNotActive": "This loan is not active.",
    "NotTheBorrower": "Only the borrower can perform this action.",
    "NotTheLender": "Only the lender can perform this action.",
    "OnlyBorrowerCanRepay": "Only the borrower can repay this loan.",
    "AmountExceedsDebt": "Repayment amount exceeds the remaining debt. Please enter a smaller amount.",
    "AmountMustBeGreaterThanZero": "Amount must be greater than zero.",
    "Overpayment": "Payment amount exceeds the loan balance.",
    "RepaymentBelowMinimum": "Repayment amount is below the minimum required.",
    "LoanIsStillHealthy": "The loan is still healthy and cannot be liquidated.",
    "LoanHealthy": "The loan is healthy and cannot be liquidated.",
    "LoanCannotBeLiquidated": "This loan cannot be liquidated at this time.",
    "CannotLiquidate": "This loan cannot be liquidated at this time.",
    "GracePeriodNotExpired": "The grace period has not expired yet.",
    "LoanTooNew": "This loan was recently created. Please wait before performing this action.",
    "ExtensionAlreadyRequested": "A loan extension has already been requested.",
    "NoExtensionRequested": "No extension has been requested for this loan.",
    "AlreadyApproved": "This has already been approved.",
    "LoanAlreadyRepaid": "This loan has already been fully repaid.",
    "NotKYCVerified": "Your account has not been KYC verified. Please complete verification first.",
}

REQUIRE_REASON_MESSAGES: Mapping[str, str] = {
    "Insufficient collateral value for liquidation": "The collateral value is insufficient for liquidation.",
    "Insufficient collateral value": "The collateral value is insufficient for this operation.",
    "Insufficient collateral": "The escrow does not have enough collateral to release.",
    "Amount must be > 0": "Amount must be greater than zero.",
    "Loan not found": "The specified loan was not found.",
    "Profit below minimum threshold": "The liquidation profit is below the minimum required threshold.",
    "Collateral already deposited": "Collateral has already been deposited for this offer.",
    "Price data is stale": "Price data is stale. Please refresh the price feed before proceeding.",
    "Invalid price": "Invalid price data from oracle.",
}

_SELECTOR_PATTERN = re.compile(r"0x[a-fA-F0-9]{8}(?![a-fA-F0-9])")
_REASON_PATTERNS = (
    re.compile(r"reverted with reason string ['\"](.+?)['\"]", re.IGNORECASE),
    re.compile(r"reverted with the following reason:\s*(.+?)(?:\n|$)", re.IGNORECASE),
    re.compile(r"require\(.*?,\s*['\"](.+?)['\"]\)"),
)


def humanize_error_name(error_name: str) -> str:
    """'LoanMustBeActiveForMinimumDuration' -> 'Loan must be active for minimum duration'."""
    words = re.findall(r"[A-Z]+(?=[A-Z][a-z]|\d|$)|[A-Z]?[a-z]+|\d+", error_name)
    if not words:
        return error_name
    sentence = " ".join(w if w.isupper() else w.lower() for w in words)
    return sentence[0].upper() + sentence[1:]


def map_revert_reason(reason: str) -> str:
    """Known require() reason -> friendly text; exact match first, then substring."""
    reason = reason.strip()
    if reason in REQUIRE_REASON_MESSAGES:
        return REQUIRE_REASON_MESSAGES[reason]
    lowered = reason.lower()
    for key, message in REQUIRE_REASON_MESSAGES.items():
        if key.lower() in lowered:
            return message
    return reason


def _selector_message(result: SimulationResult) -> Optional[str]:
    if result.selector and result.selector.lower() in ERROR_SELECTOR_MESSAGES:
        return ERROR_SELECTOR_MESSAGES[result.selector.lower()]
    text = " ".join(t for t in (result.message, result.revert_reason) if t)
    for match in _SELECTOR_PATTERN.findall(text):
        if match.lower() in ERROR_SELECTOR_MESSAGES:
            return ERROR_SELECTOR_MESSAGES[match.lower()]
    return None


def _raw_reason(result: SimulationResult) -> Optional[str]:
    if result.revert_reason:
        return result.revert_reason
    if result.message:
        for pattern in _REASON_PATTERNS:
            match = pattern.search(result.message)
            if match:
                return match.group(1)
        lowered = result.message.lower()
        for key in REQUIRE_REASON_MESSAGES:
            if key.lower() in lowered:
                return key
    return None


def decode_simulation_error(result: SimulationResult) -> str:
    """User-facing reason for a failed simulation."""
    if result.error_name:
        return ERROR_NAME_MESSAGES.get(result.error_name) or humanize_error_name(result.error_name)

    selector_message = _selector_message(result)
    if selector_message:
        return selector_message

    reason = _raw_reason(result)
    if reason:
        return map_revert_reason(reason)

    return GENERIC_SIMULATION_FAILURE
