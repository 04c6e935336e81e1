"""
DRF Serializers
===============

1. Validation of incoming data (posts, comments, reactions)
2. Transformation of model instances to JSON

DESIGN DECISIONS:
-----------------
1. Separate serializers for list, card and detail views
2. The detail view receives the pre-built comment tree and reaction sets
   through context, so serialization issues no queries
3. Nothing here looks at request.user: read payloads are cached and shared
   between users
"""

from rest_framework import serializers
from django.contrib.auth.models import User
from django.contrib.contenttypes.models import ContentType

from .exceptions import InvalidReactionType
from .models import Post, Comment
from .services import parse_reaction_type


class UserSerializer(serializers.ModelSerializer):
    """Minimal user representation for embedding in other objects."""

    class Meta:
        model = User
        fields = ['id', 'username']
        read_only_fields = fields


class PostCardSerializer(serializers.ModelSerializer):
    """
    Post summary embedded in other posts' detail views (related, random).

    No counters: a reaction on this post must not make every other post's
    cached detail view stale.
    """
    author = UserSerializer(read_only=True)

    class Meta:
        model = Post
        fields = ['id', 'title', 'slug', 'description', 'category', 'image', 'author', 'created_at']
        read_only_fields = fields


class PostListSerializer(serializers.ModelSerializer):
    """Serializer for listings (homepage, categories)."""
    author = UserSerializer(read_only=True)

    class Meta:
        model = Post
        fields = [
            'id',
            'title',
            'slug',
            'description',
            'category',
            'tags',
            'image',
            'author',
            'like_count',
            'dislike_count',
            'comment_count',
            'created_at'
        ]
        read_only_fields = fields


class TagListField(serializers.ListField):
    """Accepts a list of strings or a comma-separated string."""
    child = serializers.CharField(max_length=50)

    def to_internal_value(self, data):
        if isinstance(data, str):
            data = [tag.strip() for tag in data.split(',')]
        data = [tag for tag in data if tag]
        return super().to_internal_value(data)


class PostWriteSerializer(serializers.ModelSerializer):
    """
    Input for creating and updating posts.

    Author and slug are set by the service, not from input.
    """
    tags = TagListField(required=False)

    class Meta:
        model = Post
        fields = ['title', 'description', 'content', 'category', 'tags', 'image']
        extra_kwargs = {
            'category': {'required': False},
            'image': {'required': False},
        }

    def validate_title(self, value):
        if len(value.strip()) < 3:
            raise serializers.ValidationError("Title must be at least 3 characters.")
        return value.strip()

    def validate_content(self, value):
        if not value.strip():
            raise serializers.ValidationError("Content cannot be empty.")
        return value


class PostEditSerializer(serializers.ModelSerializer):
    """Full post as returned to its author for editing."""
    author = UserSerializer(read_only=True)

    class Meta:
        model = Post
        fields = [
            'id', 'title', 'slug', 'description', 'content', 'category',
            'tags', 'image', 'author', 'created_at', 'updated_at'
        ]
        read_only_fields = fields


def _reactions_for(obj, reaction_sets):
    ct = ContentType.objects.get_for_model(type(obj))
    return reaction_sets.get((ct.id, obj.pk), {'likes': [], 'dislikes': []})


class ReplySerializer(serializers.ModelSerializer):
    author = UserSerializer(read_only=True)
    reactions = serializers.SerializerMethodField()

    class Meta:
        model = Comment
        fields = [
            'id',
            'content',
            'author',
            'parent',
            'like_count',
            'dislike_count',
            'reactions',
            'created_at',
            'updated_at'
        ]
        read_only_fields = fields

    def get_reactions(self, obj):
        return _reactions_for(obj, self.context.get('reaction_sets', {}))


class CommentSerializer(ReplySerializer):
    """Comment for write responses; no replies embedded."""


class CommentTreeSerializer(serializers.Serializer):
    """
    Serializes one node from build_comment_tree():
        {"comment": Comment, "replies": [Comment, ...]}
    into the comment's fields plus a "replies" list.
    """

    def to_representation(self, node):
        data = ReplySerializer(node['comment'], context=self.context).data
        data['replies'] = ReplySerializer(node['replies'], many=True, context=self.context).data
        return data


class PostDetailSerializer(serializers.ModelSerializer):
    """
    Post with its comment tree and reaction sets.

    Tree and reaction sets are passed in context by the view.
    """
    author = UserSerializer(read_only=True)
    reactions = serializers.SerializerMethodField()
    comments = serializers.SerializerMethodField()

    class Meta:
        model = Post
        fields = [
            'id',
            'title',
            'slug',
            'description',
            'content',
            'category',
            'tags',
            'image',
            'author',
            'like_count',
            'dislike_count',
            'reactions',
            'comment_count',
            'created_at',
            'updated_at',
            'comments'
        ]
        read_only_fields = fields

    def get_reactions(self, obj):
        return _reactions_for(obj, self.context.get('reaction_sets', {}))

    def get_comments(self, obj):
        comment_tree = self.context.get('comment_tree', [])
        return CommentTreeSerializer(comment_tree, many=True, context=self.context).data


class ContentSerializer(serializers.Serializer):
    """Body of comment/reply create and edit requests."""
    content = serializers.CharField(max_length=5000)

    def validate_content(self, value):
        if not value.strip():
            raise serializers.ValidationError("Comment cannot be empty.")
        return value.strip()


class ReactionSerializer(serializers.Serializer):
    """
    Body of reaction requests: {"reactionType": "likes" | "dislikes"}.

    The singular forms are accepted as well.
    """
    reactionType = serializers.CharField()

    def validate_reactionType(self, value):
        try:
            return parse_reaction_type(value)
        except InvalidReactionType as exc:
            raise serializers.ValidationError(str(exc))
