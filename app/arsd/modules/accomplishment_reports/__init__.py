"""
Accomplishment reports module.

Project managers/inspectors upload weekly spreadsheets; once a report is
approved its DATA SHEET (and optional IPOW sheet) is parsed into tables
that feed the dashboards and the warehouse stock view.
"""
