"""
Default payroll rule set (Malaysian bank transfers).

This is rule *content*: the engine itself is industry-neutral and runs any
RuleSet. The payroll set is what the CLI and importer use when no rule
configuration is supplied.
"""

from .types import EnumOption, FieldRule, FieldType, RuleSet

MALAYSIAN_BANK_CODES: tuple[EnumOption, ...] = (
    EnumOption("MBB", "Maybank", ("maybank", "maybank berhad", "malayan banking")),
    EnumOption("CIMB", "CIMB Bank", ("cimb", "cimb bank", "cimb bank berhad")),
    EnumOption("PBB", "Public Bank", ("public bank", "public bank berhad", "pbb")),
    EnumOption("RHB", "RHB Bank", ("rhb", "rhb bank", "rhb bank berhad")),
    EnumOption("HLB", "Hong Leong Bank", ("hong leong", "hong leong bank", "hlb", "hlbb")),
    EnumOption("AMB", "AmBank", ("ambank", "am bank", "ambank berhad")),
    EnumOption("BIMB", "Bank Islam", ("bank islam", "bimb", "bank islam malaysia")),
    EnumOption("BSN", "BSN", ("bsn", "bank simpanan nasional")),
    EnumOption("OCBC", "OCBC Bank", ("ocbc", "ocbc bank")),
    EnumOption("UOB", "UOB Bank", ("uob", "uob bank", "united overseas bank")),
    EnumOption("HSBC", "HSBC Bank", ("hsbc", "hsbc bank")),
    EnumOption("SCB", "Standard Chartered", ("standard chartered", "scb", "stanchart")),
)

# Cells consulted for duplicate detection and bank exports
NAME_FIELD = "name"
AMOUNT_FIELD = "amount"
ACCOUNT_FIELD = "accountNumber"
BANK_FIELD = "bank"
PHONE_FIELD = "phone"
DATE_FIELD = "date"

PAYROLL_RULES = RuleSet(
    name="payroll",
    fields=(
        FieldRule(
            key=NAME_FIELD,
            label="Payee Name",
            type=FieldType.STRING,
            required=True,
            behavior="name",
            format="Title Case",
            constraints=("Payee name is required", "Name too short"),
            settings={"min_length": 2},
        ),
        FieldRule(
            key=AMOUNT_FIELD,
            label="Amount (RM)",
            type=FieldType.NUMBER,
            required=True,
            behavior="amount",
            format="0000.00 (no currency)",
            constraints=("Amount is required", "Amount must be positive"),
            settings={
                "decimal_places": 2,
                "high_value_threshold": 50000,
                "high_value_message": "High value transaction >RM{threshold} - requires BNM approval",
            },
        ),
        FieldRule(
            key=ACCOUNT_FIELD,
            label="Account Number",
            type=FieldType.STRING,
            required=True,
            behavior="account_number",
            format="Digits only (no dashes)",
            constraints=("Account number is required", "10-16 digits"),
            settings={"min_length": 10, "max_length": 16},
        ),
        FieldRule(
            key=BANK_FIELD,
            label="Bank Code",
            type=FieldType.ENUM,
            format="3-letter code (MBB, PBB)",
            options=MALAYSIAN_BANK_CODES,
        ),
        FieldRule(
            key=PHONE_FIELD,
            label="Phone Number",
            type=FieldType.PHONE,
            format="+60XXXXXXXXX",
            settings={"phone_country": "MY"},
        ),
        FieldRule(
            key=DATE_FIELD,
            label="Date",
            type=FieldType.DATE,
            format="YYYY-MM-DD",
            settings={"day_first": True},
        ),
    ),
)
