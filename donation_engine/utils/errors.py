"""Custom exceptions for the donation engine"""


class DonationEngineError(Exception):
    """Base exception for donation engine errors"""
    pass


class ConfigurationError(DonationEngineError):
    """Configuration loading errors"""
    pass


class StateManagerError(DonationEngineError):
    """Job state management errors"""
    pass


class ValidationError(DonationEngineError):
    """Caller supplied invalid input; never retried automatically"""
    pass


class InvalidAmountError(ValidationError):
    """Donation amount is missing, malformed or not positive"""
    pass


class CaseNotEligibleError(ValidationError):
    """Case is missing, not approved or already assigned"""
    pass


class UnsupportedCurrencyPairError(ValidationError):
    """No rate entry exists for a currency pair"""
    pass


class InvalidPaymentError(ValidationError):
    """Payment confirmation payload cannot be mapped"""
    pass


class InvalidTaxYearError(ValidationError):
    """Tax year outside the allowed range"""
    pass


class DonorNotFoundError(DonationEngineError):
    """Donor profile lookup failed"""
    pass


class NoEligibleDonationsError(DonationEngineError):
    """Donor has no completed donations in the tax year"""
    pass


class ReceiptNotFoundError(DonationEngineError):
    """Receipt lookup failed"""
    pass


class PersistenceError(DonationEngineError):
    """Storage layer errors; safe to retry the whole operation"""
    pass


class DuplicateRecordError(PersistenceError):
    """A uniqueness constraint rejected the write"""
    pass


class LedgerUnavailableError(PersistenceError):
    """Ledger could not be queried at all"""
    pass


class DocumentRenderError(DonationEngineError):
    """Receipt document could not be rendered or stored"""
    pass


class DeliveryError(DonationEngineError):
    """Receipt delivery errors"""
    pass


class ChannelUnavailableError(DeliveryError):
    """Delivery channel failed its readiness check"""
    pass
