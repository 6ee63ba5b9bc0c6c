"""
Tenants application: company accounts that scope every policy fact.
"""
