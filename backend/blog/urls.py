"""
Blog App URL Configuration

Fixed-prefix routes (home/, categories/, create/, comment/, reply/) come
before the <slug> routes so a slug can never shadow them.
"""
from django.urls import path
from .views import (
    HomeView,
    CategoryListView,
    CategoryBlogsView,
    PostCreateView,
    PostDetailView,
    PostEditView,
    PostReactionView,
    CommentCreateView,
    CommentDetailView,
    CommentReactionView,
    ReplyCreateView,
    ReplyDetailView,
    ReplyReactionView,
    MockAuthView,
    WhoAmIView
)

urlpatterns = [
    # Listings
    path('blogs/', HomeView.as_view(), name='blog-list'),
    path('blogs/home/', HomeView.as_view(), name='home'),
    path('blogs/categories/', CategoryListView.as_view(), name='categories'),
    path('blogs/categories/<str:category>/', CategoryBlogsView.as_view(), name='category-blogs'),

    # Comments and replies
    path('blogs/comment/<int:comment_id>/', CommentDetailView.as_view(), name='comment-detail'),
    path('blogs/comment/<int:comment_id>/reply/', ReplyCreateView.as_view(), name='reply-create'),
    path('blogs/reply/<int:reply_id>/', ReplyDetailView.as_view(), name='reply-detail'),
    path('blogs/reply/<int:reply_id>/react/', ReplyReactionView.as_view(), name='reply-react'),

    # Posts
    path('blogs/create/', PostCreateView.as_view(), name='post-create'),
    path('blogs/<slug:slug>/', PostDetailView.as_view(), name='post-detail'),
    path('blogs/<slug:slug>/edit/', PostEditView.as_view(), name='post-edit'),
    path('blogs/<slug:slug>/react/', PostReactionView.as_view(), name='post-react'),
    path('blogs/<slug:slug>/comment/', CommentCreateView.as_view(), name='comment-create'),
    path('blogs/<slug:slug>/comment/<int:comment_id>/react/', CommentReactionView.as_view(), name='comment-react'),

    # Auth (development)
    path('auth/mock-login/', MockAuthView.as_view(), name='mock-login'),
    path('auth/whoami/', WhoAmIView.as_view(), name='whoami'),
]
