"""
Seqtrade - 1-3-2-6 Binary Contract Trading Core

Automates stake progression, loss recovery and trade execution for
sequences of binary-outcome contracts against a remote trading venue.
Decides before each trade whether to trade and at what stake, executes
the purchase, waits for settlement and enforces session stop conditions.
"""

__version__ = "0.1.0"
__author__ = "Seqtrade Team"
