"""
rfp_ingestion — RFP document ingestion pipeline

Turns uploaded procurement documents (PDF, Excel, Word) into ordered
sections of prioritised question records, ready for answer generation
and team assignment.
"""

__version__ = "1.0.0"
