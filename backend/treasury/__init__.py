"""
Treasury backend: financial movements for multi-area organisations.

Routers are grouped by domain area:
- movements: creation, edits, approval workflow, history, splits
- attachments: receipts stored on a movement
- drafts: imported movements awaiting categorization
- imports: CSV ingestion into drafts and ImportJob tracking
- dashboard: approved-balance aggregations
- reports: CSV exports, monthly summaries and category breakdowns
- areas / bank_accounts: supporting reference data
- admincenter: health for the global Admin Center
"""
