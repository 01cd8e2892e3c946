"""directory_hub.integrations: External service gateway modules.

All outbound HTTP calls to the backing spreadsheet go through a gateway
in this package, never via bare `requests` calls in services or blueprints.

Current gateways:
  sheets_gateway.GoogleSheetsClient: Google Sheets v4 REST API
"""
