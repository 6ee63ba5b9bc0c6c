"""
Django admin configuration for core app.
"""
from django.contrib import admin


# Customize admin site header and title
admin.site.site_header = "Crowd Portal Access Administration"
admin.site.site_title = "Crowd Portal Access Admin"
admin.site.index_title = "Capability catalog and policy records"
