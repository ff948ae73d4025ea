"""Receipt reconciliation.

Scans of purchase receipts are broken into lines, each line is matched
against what earlier confirmations taught the learned-line store, and
confirmed lines become item quantity changes.
"""
