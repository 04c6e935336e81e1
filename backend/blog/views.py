"""
DRF Views
=========

API endpoints for the blog.

Read endpoints (homepage, categories, post detail) go through the
read-through response cache in caching.py. Write endpoints never touch the
cache directly: reactions invalidate from the reaction service, content
writes from signals.

AUTHENTICATION NOTE:
--------------------
Login is handled upstream; views trust request.user. For development,
auth/mock-login/ starts a session for any username.
"""

from rest_framework import status, permissions
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.pagination import CursorPagination
from django.contrib.auth.models import User
from django.shortcuts import get_object_or_404

from . import content
from .caching import blog_cache, category_cache, homepage_cache
from .models import Post, Comment
from .queries import (
    build_comment_tree,
    get_blogs_grouped_by_category,
    get_comments_for_post,
    get_post_by_slug,
    get_posts_in_category,
    get_random_blogs_by_category,
    get_related_posts,
    list_posts,
)
from .serializers import (
    CommentSerializer,
    ContentSerializer,
    PostCardSerializer,
    PostDetailSerializer,
    PostEditSerializer,
    PostListSerializer,
    PostWriteSerializer,
    ReactionSerializer,
)
from .services import reaction_sets, toggle_reaction

# Replies shown per comment before "show more" in the client
DISPLAYED_REPLIES = 3


def _grouped(posts_by_category, serializer_class):
    return {
        category: serializer_class(posts, many=True).data
        for category, posts in posts_by_category.items()
    }


class BlogPagination(CursorPagination):
    """
    Cursor pagination for the homepage listing.

    The cursor is part of the query string, so every page is cached under
    its own key. Links are relative: the cache key has no host or scheme,
    so neither may the cached body.
    """
    page_size = 20
    ordering = '-created_at'
    cursor_query_param = 'cursor'

    def paginate_queryset(self, queryset, request, view=None):
        page = super().paginate_queryset(queryset, request, view=view)
        self.base_url = request.get_full_path()
        return page


class HomeView(APIView):
    """
    GET /api/blogs/  and  GET /api/blogs/home/

    Newest posts (paginated) plus one random post per category and the
    per-category listing.
    """
    permission_classes = [permissions.AllowAny]
    pagination_class = BlogPagination

    @homepage_cache
    def get(self, request):
        paginator = self.pagination_class()
        page = paginator.paginate_queryset(list_posts(), request, view=self)

        return Response({
            'success': True,
            'data': {
                'blogs': PostListSerializer(page, many=True).data,
                'next': paginator.get_next_link(),
                'previous': paginator.get_previous_link(),
                'randomBlogByCategory': _grouped(get_random_blogs_by_category(), PostCardSerializer),
                'blogsByCategory': _grouped(get_blogs_grouped_by_category(), PostListSerializer),
            }
        })


class CategoryListView(APIView):
    """
    GET /api/blogs/categories/
    """
    permission_classes = [permissions.AllowAny]

    @category_cache
    def get(self, request):
        return Response({
            'success': True,
            'data': {
                'blogsByCategory': _grouped(get_blogs_grouped_by_category(), PostListSerializer),
            }
        })


class CategoryBlogsView(APIView):
    """
    GET /api/blogs/categories/<category>/
    """
    permission_classes = [permissions.AllowAny]

    @category_cache
    def get(self, request, category):
        posts = get_posts_in_category(category)
        return Response({
            'success': True,
            'data': PostListSerializer(posts, many=True).data,
        })


class PostCreateView(APIView):
    """
    POST /api/blogs/create/

    Body: {"title", "description", "content", "category", "tags", "image"}
    """
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        serializer = PostWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        post = content.create_post(author=request.user, **serializer.validated_data)

        return Response({
            'success': True,
            'message': 'Blog created successfully',
            'data': PostEditSerializer(post).data,
        }, status=status.HTTP_201_CREATED)


class PostDetailView(APIView):
    """
    GET    /api/blogs/<slug>/   post with comment tree, related and random posts
    DELETE /api/blogs/<slug>/   delete (author only)

    QUERY COUNT (cache miss): post, comments, reactions, related, categories
    + one per category for the random pick.
    """

    def get_permissions(self):
        if self.request.method == 'GET':
            return [permissions.AllowAny()]
        return [permissions.IsAuthenticated()]

    @blog_cache
    def get(self, request, slug):
        post = get_post_by_slug(slug)
        if not post:
            return Response(
                {'success': False, 'error': 'Blog not found'},
                status=status.HTTP_404_NOT_FOUND
            )

        flat_comments = get_comments_for_post(post.id)
        comment_tree = build_comment_tree(flat_comments)
        sets = reaction_sets([post, *flat_comments])

        serializer = PostDetailSerializer(
            post,
            context={
                'comment_tree': comment_tree,
                'reaction_sets': sets,
            }
        )

        return Response({
            'success': True,
            'data': {
                'blog': serializer.data,
                'commentCount': post.comment_count,
                'relatedBlog': PostCardSerializer(get_related_posts(post), many=True).data,
                'randomBlogByCategory': _grouped(get_random_blogs_by_category(), PostCardSerializer),
                'displayedReplies': DISPLAYED_REPLIES,
            }
        })

    def delete(self, request, slug):
        post = get_object_or_404(Post, slug=slug)
        content.delete_post(post, request.user)
        return Response({'success': True, 'message': 'Blog deleted successfully'})


class PostEditView(APIView):
    """
    GET       /api/blogs/<slug>/edit/   post as stored, for the edit form
    PUT/PATCH /api/blogs/<slug>/edit/   update (author only)
    """
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request, slug):
        post = get_object_or_404(Post, slug=slug)
        return Response({'success': True, 'data': PostEditSerializer(post).data})

    def put(self, request, slug):
        return self._update(request, slug, partial=False)

    def patch(self, request, slug):
        return self._update(request, slug, partial=True)

    def _update(self, request, slug, partial):
        post = get_object_or_404(Post, slug=slug)
        serializer = PostWriteSerializer(post, data=request.data, partial=partial)
        serializer.is_valid(raise_exception=True)

        post = content.update_post(post, request.user, **serializer.validated_data)

        return Response({
            'success': True,
            'message': 'Blog updated successfully',
            'data': PostEditSerializer(post).data,
        })


class PostReactionView(APIView):
    """
    POST /api/blogs/<slug>/react/

    Body: {"reactionType": "likes" | "dislikes"}

    Returns:
    {
        "success": true,
        "data": {"userLiked", "userDisliked", "likesCount", "dislikesCount"}
    }
    """
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, slug):
        serializer = ReactionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        post = get_object_or_404(Post, slug=slug)
        result = toggle_reaction(post, request.user, serializer.validated_data['reactionType'])

        return Response({'success': True, 'data': result.to_dict()})


class CommentCreateView(APIView):
    """
    POST /api/blogs/<slug>/comment/

    Body: {"content": "Comment text"}
    """
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, slug):
        serializer = ContentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        post = get_object_or_404(Post, slug=slug)
        comment = content.add_comment(post, request.user, serializer.validated_data['content'])

        return Response({
            'success': True,
            'message': 'Comment added successfully',
            'data': {
                'comment': CommentSerializer(comment).data,
                'blogSlug': post.slug,
            }
        }, status=status.HTTP_201_CREATED)


class CommentDetailView(APIView):
    """
    PATCH  /api/blogs/comment/<comment_id>/   edit (author only)
    DELETE /api/blogs/comment/<comment_id>/   delete with its replies (author only)
    """
    permission_classes = [permissions.IsAuthenticated]

    def get_object(self, comment_id):
        return get_object_or_404(
            Comment.objects.select_related('post'),
            id=comment_id,
            parent__isnull=True
        )

    def patch(self, request, comment_id):
        comment = self.get_object(comment_id)
        serializer = ContentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        comment = content.edit_comment(comment, request.user, serializer.validated_data['content'])

        return Response({
            'success': True,
            'message': 'Comment updated successfully',
            'data': {
                'comment': CommentSerializer(comment).data,
                'blogSlug': comment.post.slug,
            }
        })

    def delete(self, request, comment_id):
        comment = self.get_object(comment_id)
        slug = comment.post.slug
        content.delete_comment(comment, request.user)
        return Response({
            'success': True,
            'message': 'Comment deleted successfully',
            'data': {'blogSlug': slug},
        })


class CommentReactionView(APIView):
    """
    POST /api/blogs/<slug>/comment/<comment_id>/react/

    The comment must belong to the post in the URL.
    """
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, slug, comment_id):
        serializer = ReactionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        comment = get_object_or_404(
            Comment,
            id=comment_id,
            post__slug=slug,
            parent__isnull=True
        )
        result = toggle_reaction(comment, request.user, serializer.validated_data['reactionType'])

        return Response({
            'success': True,
            'data': {'commentId': comment.id, 'blogSlug': slug, **result.to_dict()}
        })


class ReplyCreateView(APIView):
    """
    POST /api/blogs/comment/<comment_id>/reply/

    Body: {"content": "Reply text"}
    """
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, comment_id):
        serializer = ContentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        parent = get_object_or_404(Comment.objects.select_related('post'), id=comment_id)
        reply = content.add_reply(parent, request.user, serializer.validated_data['content'])

        return Response({
            'success': True,
            'message': 'Reply added successfully',
            'data': {
                'reply': CommentSerializer(reply).data,
                'blogSlug': parent.post.slug,
            }
        }, status=status.HTTP_201_CREATED)


class ReplyDetailView(APIView):
    """
    PATCH  /api/blogs/reply/<reply_id>/   edit (author only)
    DELETE /api/blogs/reply/<reply_id>/   delete (author only)
    """
    permission_classes = [permissions.IsAuthenticated]

    def get_object(self, reply_id):
        return get_object_or_404(
            Comment.objects.select_related('post'),
            id=reply_id,
            parent__isnull=False
        )

    def patch(self, request, reply_id):
        reply = self.get_object(reply_id)
        serializer = ContentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        reply = content.edit_reply(reply, request.user, serializer.validated_data['content'])

        return Response({
            'success': True,
            'message': 'Reply updated successfully',
            'data': {
                'reply': CommentSerializer(reply).data,
                'blogSlug': reply.post.slug,
            }
        })

    def delete(self, request, reply_id):
        reply = self.get_object(reply_id)
        slug = reply.post.slug
        content.delete_reply(reply, request.user)
        return Response({
            'success': True,
            'message': 'Reply deleted successfully',
            'data': {'blogSlug': slug},
        })


class ReplyReactionView(APIView):
    """
    POST /api/blogs/reply/<reply_id>/react/
    """
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, reply_id):
        serializer = ReactionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        reply = get_object_or_404(
            Comment.objects.select_related('post'),
            id=reply_id,
            parent__isnull=False
        )
        result = toggle_reaction(reply, request.user, serializer.validated_data['reactionType'])

        return Response({
            'success': True,
            'data': {'replyId': reply.id, 'blogSlug': reply.post.slug, **result.to_dict()}
        })


# ============================================================================
# DEVELOPMENT/TESTING HELPERS
# ============================================================================

class MockAuthView(APIView):
    """
    POST /api/auth/mock-login/

    DEVELOPMENT ONLY: Quick login for testing without full auth flow.
    Creates user if doesn't exist.

    Body: { "username": "testuser" }
    """
    permission_classes = [permissions.AllowAny]

    def post(self, request):
        username = request.data.get('username', 'testuser')
        user, created = User.objects.get_or_create(
            username=username,
            defaults={'email': f'{username}@example.com'}
        )

        from django.contrib.auth import login
        login(request, user)

        return Response({
            'user_id': user.id,
            'username': user.username,
            'created': created
        })


class WhoAmIView(APIView):
    """
    GET /api/auth/whoami/

    Returns current authenticated user info.
    """
    permission_classes = [permissions.AllowAny]

    def get(self, request):
        if request.user.is_authenticated:
            return Response({
                'authenticated': True,
                'user_id': request.user.id,
                'username': request.user.username
            })
        return Response({
            'authenticated': False,
            'user_id': None,
            'username': None
        })
