"""
Read Queries
============

Query functions behind the cached read endpoints. None of them write, and
none of them depend on the requesting user, so their results are safe to
cache per URL/slug.

THE N+1 PROBLEM:
----------------
A post detail embeds every comment and reply with their authors and
reaction sets. We fetch:
1. the post with its author
2. ALL comments and replies of the post with their authors, in one query
3. ALL reactions on the post and those comments, in one query
and assemble the tree in Python.
"""

from typing import Optional
from django.db.models import QuerySet

from .models import Post, Comment

RELATED_POSTS_LIMIT = 3


def get_post_by_slug(slug: str) -> Optional[Post]:
    return (
        Post.objects
        .select_related('author')
        .filter(slug=slug)
        .first()
    )


def list_posts() -> QuerySet:
    """All posts, newest first. Paginated by the view."""
    return Post.objects.select_related('author').order_by('-created_at')


def get_posts_in_category(category: str) -> list[Post]:
    return list(
        Post.objects
        .select_related('author')
        .filter(category=category)
        .order_by('-created_at')
    )


def get_categories() -> list[str]:
    return list(
        Post.objects
        .order_by('category')
        .values_list('category', flat=True)
        .distinct()
    )


def get_blogs_grouped_by_category() -> dict[str, list[Post]]:
    """
    {category: [posts]} for every category that has posts.

    One query; grouping happens in Python.
    """
    grouped: dict[str, list[Post]] = {}
    posts = (
        Post.objects
        .select_related('author')
        .order_by('category', '-created_at')
    )
    for post in posts:
        grouped.setdefault(post.category, []).append(post)
    return grouped


def get_random_blogs_by_category(exclude_category: Optional[str] = None) -> dict[str, list[Post]]:
    """
    One random post per category (skipping exclude_category).

    Values are single-item lists to keep the payload shape of the grouped
    listing.
    """
    result: dict[str, list[Post]] = {}
    for category in get_categories():
        if category == exclude_category:
            continue
        post = (
            Post.objects
            .select_related('author')
            .filter(category=category)
            .order_by('?')
            .first()
        )
        if post is not None:
            result[category] = [post]
    return result


def get_related_posts(post: Post, limit: int = RELATED_POSTS_LIMIT) -> list[Post]:
    return list(
        Post.objects
        .select_related('author')
        .filter(category=post.category)
        .exclude(id=post.id)
        .order_by('-created_at')[:limit]
    )


def get_comments_for_post(post_id: int) -> list[Comment]:
    """
    Fetch ALL comments and replies for a post in a SINGLE query, oldest
    first, so a parent always precedes its replies.
    """
    return list(
        Comment.objects
        .filter(post_id=post_id)
        .select_related('author')
        .order_by('created_at', 'id')
    )


def build_comment_tree(flat_comments: list[Comment]) -> list[dict]:
    """
    Nest replies under their comment.

    Output:
        [
            {'comment': Comment(id=1), 'replies': [Comment(id=2), Comment(id=3)]},
            {'comment': Comment(id=4), 'replies': []},
        ]
    """
    nodes = {}
    roots = []
    for comment in flat_comments:
        if comment.parent_id is None:
            node = {'comment': comment, 'replies': []}
            nodes[comment.id] = node
            roots.append(node)

    for comment in flat_comments:
        if comment.parent_id is not None:
            parent_node = nodes.get(comment.parent_id)
            if parent_node is not None:
                parent_node['replies'].append(comment)

    return roots
