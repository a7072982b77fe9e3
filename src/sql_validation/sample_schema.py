"""
Sample Business Schema
======================

Default schema used by the demo service and the test-suite.
"""

from sql_validation.schema import BusinessSchema

SAMPLE_SCHEMA_DATA = {
    "version": "2024.1",
    "tables": {
        "customers": {
            "columns": {
                "id": "INTEGER",
                "name": "TEXT",
                "email": "TEXT",
                "created_at": "DATE",
                "tier": "TEXT",
            },
            "sensitive_columns": ["email"],
            "business_purpose": "Registered customers and their loyalty tier",
        },
        "orders": {
            "columns": {
                "id": "INTEGER",
                "customer_id": "INTEGER",
                "amount": "DECIMAL",
                "order_date": "DATE",
                "status": "TEXT",
            },
            "relationships": [
                {"column": "customer_id", "ref_table": "customers", "ref_column": "id"},
            ],
            "business_purpose": "Customer orders with amount and status",
        },
        "products": {
            "columns": {
                "id": "INTEGER",
                "name": "TEXT",
                "price": "DECIMAL",
                "category": "TEXT",
                "stock": "INTEGER",
            },
            "business_purpose": "Product catalogue",
        },
        "tbl_Daily_actions": {
            "columns": {
                "PlayerID": "INTEGER",
                "Date": "DATE",
                "WhiteLabelID": "INTEGER",
                "Deposits": "DECIMAL",
                "Bets": "DECIMAL",
                "Wins": "DECIMAL",
            },
            "relationships": [
                {
                    "column": "PlayerID",
                    "ref_table": "tbl_Daily_actions_players",
                    "ref_column": "PlayerID",
                },
            ],
            "required_filters": ["Date"],
            "large": True,
            "business_purpose": "Daily player activity: deposits, bets and wins",
        },
        "tbl_Daily_actions_players": {
            "columns": {
                "PlayerID": "INTEGER",
                "Email": "TEXT",
                "Country": "TEXT",
                "DateOfBirth": "DATE",
            },
            "sensitive_columns": ["Email", "DateOfBirth"],
            "business_purpose": "Player master data",
        },
        "employees": {
            "columns": {
                "id": "INTEGER",
                "name": "TEXT",
                "department": "TEXT",
                "salary": "DECIMAL",
            },
            "sensitive_columns": ["salary"],
            "allowed_roles": ["hr", "admin"],
            "business_purpose": "Internal staff records",
        },
    },
    "business_terms": {
        "customer": ["customers"],
        "client": ["customers"],
        "premium": ["tier"],
        "tier": ["tier"],
        "order": ["orders"],
        "purchase": ["orders"],
        "revenue": ["amount"],
        "sales": ["amount"],
        "amount": ["amount"],
        "product": ["products"],
        "price": ["price"],
        "stock": ["stock"],
        "category": ["category"],
        "daily action": ["tbl_daily_actions"],
        "player": ["playerid", "tbl_daily_actions_players"],
        "deposit": ["deposits"],
        "bet": ["bets"],
        "win": ["wins"],
        "country": ["country"],
        "today": ["getdate()", "current_date", "date('now')"],
        "employee": ["employees"],
        "salary": ["salary"],
    },
    "access_policy": {
        "user_roles": {
            "admin": ["admin"],
            "hr-manager": ["hr"],
            "compliance-officer": ["compliance", "analyst"],
        },
        "default_roles": ["analyst"],
        "sensitive_data_roles": ["admin", "compliance"],
    },
}

SAMPLE_BUSINESS_SCHEMA = BusinessSchema.from_dict(SAMPLE_SCHEMA_DATA)
