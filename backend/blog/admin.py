"""
Django Admin Configuration for Blog Models

Saves and deletes made here go through the model signals, so cached views
are invalidated the same way as for API writes.
"""
from django.contrib import admin
from .models import Post, Comment, Reaction


@admin.register(Post)
class PostAdmin(admin.ModelAdmin):
    list_display = ['title', 'slug', 'author', 'category', 'like_count', 'dislike_count', 'comment_count', 'created_at']
    list_filter = ['category', 'created_at']
    search_fields = ['title', 'description', 'author__username']
    readonly_fields = ['like_count', 'dislike_count', 'comment_count', 'created_at', 'updated_at']
    prepopulated_fields = {'slug': ('title',)}


@admin.register(Comment)
class CommentAdmin(admin.ModelAdmin):
    list_display = ['id', 'post', 'author', 'parent', 'like_count', 'dislike_count', 'created_at']
    list_filter = ['created_at']
    search_fields = ['content', 'author__username']
    readonly_fields = ['like_count', 'dislike_count', 'created_at', 'updated_at']


@admin.register(Reaction)
class ReactionAdmin(admin.ModelAdmin):
    list_display = ['user', 'kind', 'content_type', 'object_id', 'created_at']
    list_filter = ['kind', 'content_type', 'created_at']
    search_fields = ['user__username']
    readonly_fields = ['user', 'kind', 'content_type', 'object_id', 'created_at']

    def has_add_permission(self, request):
        # Reactions only change through the toggle, which keeps counters in step
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
