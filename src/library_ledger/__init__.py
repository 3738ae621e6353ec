"""Library Ledger: a library catalog and lending tracker.

Borrowers browse the catalog and borrow or return copies; librarians manage
catalog entries and monitor loans. The service is exposed as a REST API and
as an MCP server.
"""

__version__ = "0.1.0"
