"""
Storage and retention for captured webhook requests.
"""
