from django.contrib import admin

from cvforge.resumes.models import Resume


@admin.register(Resume)
class ResumeAdmin(admin.ModelAdmin):
    list_display = ["title", "owner", "is_purchased", "purchased_at", "modified"]
    list_filter = ["is_purchased"]
    search_fields = ["title", "owner__email"]
    raw_id_fields = ["owner"]
    readonly_fields = ["is_purchased", "purchased_at"]
