"""
Data Models for the blog
========================

Design Philosophy:
------------------
1. Posts, comments and replies are all "reactables": they carry a likes set
   and a dislikes set of user ids.
   - The sets live in a single Reaction table (one row per user per target)
   - A unique constraint on (user, target) means a user can never sit in
     both sets of the same target: the row has exactly one kind
   - like_count / dislike_count are denormalised on the target for list views

2. Replies are Comments with a parent (Adjacency List, one level deep)
   - A reply's parent is always a top-level comment
   - Every comment and reply points at its post, so the post whose views
     embed it is always one FK away

3. Reactions use ContentType so one table serves every reactable model
   - Same trade-off as a unified likes table: an extra JOIN on reads,
     one code path for writes

Indexes Strategy:
-----------------
- post.slug: detail lookups (unique)
- post.category + post.created_at: category listings
- comment.post + comment.created_at: fetching the whole tree for a post
- reaction.content_type + reaction.object_id: reading the sets of a target
"""

from django.db import models
from django.contrib.auth.models import User
from django.contrib.contenttypes.fields import GenericForeignKey, GenericRelation
from django.contrib.contenttypes.models import ContentType
from django.utils import timezone
from django.utils.text import slugify


class ReactionType(models.TextChoices):
    LIKE = 'like', 'Like'
    DISLIKE = 'dislike', 'Dislike'

    @property
    def opposite(self):
        return ReactionType.DISLIKE if self is ReactionType.LIKE else ReactionType.LIKE

    @property
    def count_field(self):
        return f'{self.value}_count'

    @property
    def set_name(self):
        """Name of the user set in API payloads ('likes' / 'dislikes')."""
        return f'{self.value}s'


# Slugs that would be shadowed by fixed routes under blogs/
RESERVED_SLUGS = {'home', 'categories', 'create'}


class Reactable(models.Model):
    """
    Anything users can like or dislike.

    The counters mirror the size of the likes/dislikes sets and are only
    ever moved by the reaction service with F() expressions.
    """
    like_count = models.PositiveIntegerField(default=0)
    dislike_count = models.PositiveIntegerField(default=0)

    reactions = GenericRelation('Reaction')

    class Meta:
        abstract = True


class Post(Reactable):
    """
    A blog post. Root-level content that can have comments.
    """
    title = models.CharField(max_length=300)
    slug = models.SlugField(max_length=320, unique=True)
    description = models.CharField(max_length=500)
    content = models.TextField()
    author = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='posts',
    )
    category = models.CharField(max_length=100, default='Article', db_index=True)
    tags = models.JSONField(default=list, blank=True)
    image = models.URLField(max_length=500, blank=True)
    created_at = models.DateTimeField(default=timezone.now, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    # Top-level comments only; maintained by signals
    comment_count = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['category', '-created_at'], name='blog_post_categor_5b1b43_idx'),
        ]

    def __str__(self):
        return self.title[:50]

    def assign_slug(self):
        """
        Derive the slug from the title, adding a numeric suffix on collision.
        """
        base = slugify(self.title)[:300] or 'post'
        if base in RESERVED_SLUGS:
            base = f'{base}-post'
        candidate = base
        suffix = 2
        others = Post.objects.exclude(pk=self.pk)
        while others.filter(slug=candidate).exists():
            candidate = f'{base}-{suffix}'
            suffix += 1
        self.slug = candidate
        return candidate


class Comment(Reactable):
    """
    A comment on a post, or a reply to a comment.

    parent is NULL for comments. For replies it points at a top-level
    comment; replies cannot be replied to.
    """
    post = models.ForeignKey(
        Post,
        on_delete=models.CASCADE,
        related_name='comments',
    )
    author = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='comments'
    )
    parent = models.ForeignKey(
        'self',
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='replies',
    )
    content = models.TextField()
    created_at = models.DateTimeField(default=timezone.now, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['created_at']
        indexes = [
            models.Index(fields=['post', 'created_at'], name='blog_commen_post_id_580e96_idx'),
            models.Index(fields=['parent', 'created_at'], name='blog_commen_parent__7c3f2a_idx'),
        ]

    def __str__(self):
        kind = 'Reply' if self.is_reply else 'Comment'
        return f"{kind} by {self.author.username} on {self.post_id}"

    @property
    def is_reply(self):
        return self.parent_id is not None


class Reaction(models.Model):
    """
    Membership of one user in the likes or dislikes set of one target.

    CONCURRENCY STRATEGY:
    - Unique constraint (user, content_type, object_id) enforced at DB level,
      so the two sets of a target stay disjoint even under racing requests
    - Toggles run under a row lock on the target (see services.py)
    - Deleting a user takes their rows out of the target counters first
      (see signals.py)
    """
    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='reactions'
    )
    kind = models.CharField(max_length=10, choices=ReactionType.choices)

    content_type = models.ForeignKey(
        ContentType,
        on_delete=models.CASCADE
    )
    object_id = models.PositiveBigIntegerField()
    content_object = GenericForeignKey('content_type', 'object_id')

    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=['user', 'content_type', 'object_id'],
                name='unique_reaction_per_user_per_object'
            )
        ]
        indexes = [
            models.Index(fields=['content_type', 'object_id'], name='blog_reacti_content_2d1f0b_idx'),
        ]

    def __str__(self):
        return f"{self.user.username} {self.kind}d {self.content_type.model} {self.object_id}"
