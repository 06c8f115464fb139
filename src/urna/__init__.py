"""urna: orquestación de votaciones sobre un ledger.

English: Election orchestration over an on-ledger voting contract.
"""

__version__ = "0.1.0"
