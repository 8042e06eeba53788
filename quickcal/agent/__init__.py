"""
Clarification dialogue: parsing, interpretation and the session engine
"""
