"""
Sample payroll batches for tests.

- SAMPLE_ROWS: rows keyed by field key (identity mapping)
- SAMPLE_CSV: the first two rows as an uploaded CSV with its own headers
- SAMPLE_CSV_MAPPING: CSV header -> field key
"""

# Raw payroll rows as they come out of an uploaded file
SAMPLE_ROWS = [
    {
        "name": "mr. ali ahmad",
        "amount": "rm 5,000",
        "accountNumber": "1122-3344-5566",
        "bank": "maybank",
        "phone": "012-345 6789",
        "date": "15/10/2024",
    },
    {
        "name": "Siti Nurhaliza",
        "amount": "3200.00",
        "accountNumber": "",
        "bank": "CIMB",
        "phone": "+60198765432",
        "date": "2024-10-20",
    },
    {
        # Same payee, amount and account as hist-001 of the demo history
        "name": "Tenaga Nasional",
        "amount": "5000.00",
        "accountNumber": "1234567890",
        "bank": "MBB",
        "phone": "",
        "date": "2024-10-21",
    },
]

SAMPLE_CSV = """Employee,Salary,Account,Bank,Mobile,Pay Date
mr. ali ahmad,"rm 5,000",1122-3344-5566,maybank,012-345 6789,15/10/2024
Siti Nurhaliza,3200.00,,CIMB,+60198765432,2024-10-20
"""

SAMPLE_CSV_MAPPING = {
    "Employee": "name",
    "Salary": "amount",
    "Account": "accountNumber",
    "Bank": "bank",
    "Mobile": "phone",
    "Pay Date": "date",
}
