"""
Domain modules: presence state machine, session ledger, badge resolver,
aggregation, inbound event handling and the query surface.
"""
