"""Period Services - period lifecycle, reconciliation and period-end close"""
