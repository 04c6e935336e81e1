"""
Tests for the blog API

Focus areas:
1. Reaction toggling (mutual exclusion, toggle-off, switch)
2. Read-through cache (hit fidelity, what is and isn't cached)
3. Invalidation after writes (no stale reads)
4. Degraded mode (cache down, API still correct)
"""

import random
import threading
from io import StringIO
from unittest.mock import MagicMock, patch

import fakeredis
import redis
from django.contrib.auth.models import User
from django.contrib.contenttypes.models import ContentType
from django.core.management import call_command
from django.db import OperationalError, connection, transaction
from django.test import TestCase, TransactionTestCase, override_settings
from django.test.utils import CaptureQueriesContext
from rest_framework.response import Response
from rest_framework.test import APIClient, APIRequestFactory
from rest_framework.views import APIView

from . import cache_store, content, queries
from .cache_store import CacheStore, get_store, set_store
from .caching import (
    blog_detail_key,
    cache_response,
    make_key,
    request_path_key,
    slug_key,
)
from .exceptions import InvalidReactionType, StorageUnavailable, TargetNotFound
from .invalidation import CacheInvalidator, affected_slug
from .models import Post, Comment, Reaction, ReactionType
from .queries import build_comment_tree, get_comments_for_post
from .services import parse_reaction_type, reaction_sets, toggle_reaction


def make_post(author, title='Caching in practice', category='Article'):
    return content.create_post(
        author=author,
        title=title,
        description='Short description',
        content='Content ' * 10,
        category=category,
    )


class CacheTestMixin:
    """Installs an empty fakeredis-backed store for the duration of a test."""

    def setUp(self):
        super().setUp()
        self.redis = fakeredis.FakeRedis()
        self.redis.flushall()
        self.store = CacheStore(self.redis)
        self._previous_store = set_store(self.store)

    def tearDown(self):
        set_store(self._previous_store)
        super().tearDown()


class ReactionTypeTestCase(TestCase):

    def test_parse_accepts_singular_and_plural(self):
        self.assertIs(parse_reaction_type('like'), ReactionType.LIKE)
        self.assertIs(parse_reaction_type('likes'), ReactionType.LIKE)
        self.assertIs(parse_reaction_type('dislike'), ReactionType.DISLIKE)
        self.assertIs(parse_reaction_type('dislikes'), ReactionType.DISLIKE)

    def test_parse_rejects_anything_else(self):
        for value in ('love', '', None, 1, 'LIKES'):
            with self.assertRaises(InvalidReactionType):
                parse_reaction_type(value)

    def test_opposite_and_field_names(self):
        self.assertIs(ReactionType.LIKE.opposite, ReactionType.DISLIKE)
        self.assertIs(ReactionType.DISLIKE.opposite, ReactionType.LIKE)
        self.assertEqual(ReactionType.LIKE.count_field, 'like_count')
        self.assertEqual(ReactionType.DISLIKE.set_name, 'dislikes')


class ToggleReactionTestCase(TestCase):
    """
    Test the toggle rules on posts, comments and replies.

    CRITICAL: a user is never in both sets of the same target.
    """

    def setUp(self):
        self.author = User.objects.create_user('author', 'a@test.com', 'pass')
        self.user = User.objects.create_user('user', 'u@test.com', 'pass')
        self.post = make_post(self.author)

    def _sets(self, target):
        (entry,) = reaction_sets([target]).values()
        return entry

    def test_like_then_like_again_clears_it(self):
        """Scenario A: second identical click removes the like."""
        first = toggle_reaction(self.post, self.user, 'likes')
        self.assertTrue(first.user_liked)
        self.assertEqual(first.likes_count, 1)

        second = toggle_reaction(self.post, self.user, 'likes')
        self.assertFalse(second.user_liked)
        self.assertEqual(second.likes_count, 0)

        self.post.refresh_from_db()
        self.assertEqual(self.post.like_count, 0)
        self.assertEqual(self._sets(self.post), {'likes': [], 'dislikes': []})

    def test_dislike_then_like_switches(self):
        """Scenario B: liking a disliked post moves the user across."""
        result = toggle_reaction(self.post, self.user, 'dislikes')
        self.assertEqual(result.dislikes_count, 1)
        self.assertTrue(result.user_disliked)

        result = toggle_reaction(self.post, self.user, 'likes')
        self.assertEqual(result.dislikes_count, 0)
        self.assertEqual(result.likes_count, 1)
        self.assertTrue(result.user_liked)
        self.assertFalse(result.user_disliked)
        self.assertFalse(result.user_reacted_opposite)

        sets = self._sets(self.post)
        self.assertEqual(sets['likes'], [self.user.id])
        self.assertEqual(sets['dislikes'], [])

    def test_result_payload(self):
        result = toggle_reaction(self.post, self.user, ReactionType.LIKE)
        self.assertEqual(result.to_dict(), {
            'userLiked': True,
            'userDisliked': False,
            'likesCount': 1,
            'dislikesCount': 0,
        })

    def test_target_counters_updated_in_place(self):
        toggle_reaction(self.post, self.user, 'dislikes')
        self.assertEqual(self.post.dislike_count, 1)

    def test_mutual_exclusion_over_random_sequences(self):
        """Counters always match the sets, and no user is in both."""
        users = [self.user] + [
            User.objects.create_user(f'u{i}', f'u{i}@test.com', 'pass') for i in range(4)
        ]
        rng = random.Random(42)

        for _ in range(60):
            user = rng.choice(users)
            toggle_reaction(self.post, user, rng.choice(['likes', 'dislikes']))

            sets = self._sets(self.post)
            self.assertFalse(set(sets['likes']) & set(sets['dislikes']))

        self.post.refresh_from_db()
        sets = self._sets(self.post)
        self.assertEqual(self.post.like_count, len(sets['likes']))
        self.assertEqual(self.post.dislike_count, len(sets['dislikes']))

    def test_comment_and_reply_toggles(self):
        comment = content.add_comment(self.post, self.author, 'A comment')
        reply = content.add_reply(comment, self.author, 'A reply')

        toggle_reaction(comment, self.user, 'likes')
        toggle_reaction(reply, self.user, 'dislikes')

        comment.refresh_from_db()
        reply.refresh_from_db()
        self.post.refresh_from_db()
        self.assertEqual(comment.like_count, 1)
        self.assertEqual(reply.dislike_count, 1)
        # Reactions on comments never touch the post counters
        self.assertEqual(self.post.like_count, 0)

    def test_same_id_different_models_do_not_collide(self):
        comment = content.add_comment(self.post, self.author, 'A comment')
        Comment.objects.filter(id=comment.id).update(id=self.post.id)
        comment = Comment.objects.get(id=self.post.id)

        toggle_reaction(self.post, self.user, 'likes')
        result = toggle_reaction(comment, self.user, 'likes')

        self.assertTrue(result.user_liked)
        self.assertEqual(Reaction.objects.filter(user=self.user).count(), 2)

    def test_missing_target(self):
        Post.objects.filter(id=self.post.id).delete()
        with self.assertRaises(TargetNotFound):
            toggle_reaction(self.post, self.user, 'likes')

    def test_invalid_type_writes_nothing(self):
        with self.assertRaises(InvalidReactionType):
            toggle_reaction(self.post, self.user, 'love')
        self.assertFalse(Reaction.objects.exists())

    def test_database_failure_is_storage_unavailable(self):
        with patch('blog.services.Reaction.objects.create', side_effect=OperationalError('locked')):
            with self.assertRaises(StorageUnavailable):
                toggle_reaction(self.post, self.user, 'likes')

        self.post.refresh_from_db()
        self.assertEqual(self.post.like_count, 0)


class ReactionAPITestCase(CacheTestMixin, TestCase):

    def setUp(self):
        super().setUp()
        self.author = User.objects.create_user('author', 'a@test.com', 'pass')
        self.user = User.objects.create_user('user', 'u@test.com', 'pass')
        self.post = make_post(self.author)
        self.comment = content.add_comment(self.post, self.author, 'A comment')
        self.reply = content.add_reply(self.comment, self.author, 'A reply')
        self.client = APIClient()
        self.client.force_authenticate(self.user)

    def test_post_reaction(self):
        response = self.client.post(
            f'/api/blogs/{self.post.slug}/react/', {'reactionType': 'likes'}, format='json'
        )
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.data['success'])
        self.assertEqual(response.data['data'], {
            'userLiked': True,
            'userDisliked': False,
            'likesCount': 1,
            'dislikesCount': 0,
        })

    def test_comment_reaction(self):
        response = self.client.post(
            f'/api/blogs/{self.post.slug}/comment/{self.comment.id}/react/',
            {'reactionType': 'dislikes'},
            format='json'
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['data']['commentId'], self.comment.id)
        self.assertEqual(response.data['data']['blogSlug'], self.post.slug)
        self.assertEqual(response.data['data']['dislikesCount'], 1)

    def test_comment_reaction_wrong_post(self):
        other = make_post(self.author, title='Another post')
        response = self.client.post(
            f'/api/blogs/{other.slug}/comment/{self.comment.id}/react/',
            {'reactionType': 'likes'},
            format='json'
        )
        self.assertEqual(response.status_code, 404)

    def test_reply_reaction(self):
        response = self.client.post(
            f'/api/blogs/reply/{self.reply.id}/react/', {'reactionType': 'likes'}, format='json'
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['data']['replyId'], self.reply.id)
        self.assertTrue(response.data['data']['userLiked'])

    def test_invalid_reaction_type(self):
        response = self.client.post(
            f'/api/blogs/{self.post.slug}/react/', {'reactionType': 'love'}, format='json'
        )
        self.assertEqual(response.status_code, 400)
        self.assertFalse(response.data['success'])
        self.assertIn('reactionType', response.data['details'])

    def test_missing_post(self):
        response = self.client.post(
            '/api/blogs/no-such-post/react/', {'reactionType': 'likes'}, format='json'
        )
        self.assertEqual(response.status_code, 404)
        self.assertFalse(response.data['success'])

    def test_anonymous_rejected(self):
        response = APIClient().post(
            f'/api/blogs/{self.post.slug}/react/', {'reactionType': 'likes'}, format='json'
        )
        self.assertIn(response.status_code, (401, 403))
        self.assertFalse(Reaction.objects.exists())

    def test_database_failure_returns_503(self):
        with patch('blog.services.Reaction.objects.create', side_effect=OperationalError('locked')):
            response = self.client.post(
                f'/api/blogs/{self.post.slug}/react/', {'reactionType': 'likes'}, format='json'
            )
        self.assertEqual(response.status_code, 503)
        self.assertFalse(response.data['success'])


class ReadThroughCacheTestCase(CacheTestMixin, TestCase):
    """
    Test the response cache on the read endpoints.

    CRITICAL: a hit returns exactly the bytes stored on the miss.
    """

    def setUp(self):
        super().setUp()
        self.author = User.objects.create_user('author', 'a@test.com', 'pass')
        self.post = make_post(self.author)
        make_post(self.author, title='A tutorial', category='Tutorial')
        self.client = APIClient()

    def test_detail_hit_is_byte_identical(self):
        miss = self.client.get(f'/api/blogs/{self.post.slug}/')
        hit = self.client.get(f'/api/blogs/{self.post.slug}/')

        self.assertEqual(miss.status_code, 200)
        self.assertEqual(miss['X-Cache'], 'MISS')
        self.assertEqual(hit['X-Cache'], 'HIT')
        self.assertEqual(hit.content, miss.content)
        self.assertEqual(hit['Content-Type'], 'application/json')
        self.assertIn(blog_detail_key(self.post.slug), self.store.keys_matching('blog:*'))

    def test_home_second_call_skips_aggregation(self):
        """Scenario C: the second read within TTL never runs the queries."""
        with patch(
            'blog.views.get_blogs_grouped_by_category',
            wraps=queries.get_blogs_grouped_by_category
        ) as grouped:
            first = self.client.get('/api/blogs/home/')
            second = self.client.get('/api/blogs/home/')

        self.assertEqual(grouped.call_count, 1)
        self.assertEqual(first.content, second.content)
        self.assertEqual(second['X-Cache'], 'HIT')

        data = first.json()['data']
        self.assertEqual(len(data['blogs']), 2)
        self.assertEqual(set(data['blogsByCategory']), {'Article', 'Tutorial'})
        self.assertEqual(set(data['randomBlogByCategory']), {'Article', 'Tutorial'})

    def test_query_string_is_part_of_key(self):
        self.client.get('/api/blogs/?ref=feed')
        response = self.client.get('/api/blogs/')
        self.assertEqual(response['X-Cache'], 'MISS')
        self.assertEqual(len(self.store.keys_matching('homepage:*')), 2)

    def test_category_listings_cached(self):
        self.client.get('/api/blogs/categories/')
        response = self.client.get('/api/blogs/categories/Tutorial/')
        self.assertEqual(response['X-Cache'], 'MISS')
        self.assertEqual(len(response.json()['data']), 1)
        self.assertEqual(len(self.store.keys_matching('category:*')), 2)

    def test_entry_has_ttl(self):
        self.client.get(f'/api/blogs/{self.post.slug}/')
        ttl = self.redis.ttl(blog_detail_key(self.post.slug))
        self.assertGreater(ttl, 0)
        self.assertLessEqual(ttl, 600)

    @override_settings(ALLOWED_HOSTS=['localhost', '127.0.0.1', 'testserver'])
    def test_page_links_do_not_depend_on_host(self):
        for i in range(23):
            make_post(self.author, title=f'Filler post {i}')

        first = self.client.get('/api/blogs/home/', HTTP_HOST='localhost')
        second = self.client.get('/api/blogs/home/', HTTP_HOST='127.0.0.1')

        self.assertEqual(first['X-Cache'], 'MISS')
        self.assertEqual(second['X-Cache'], 'HIT')
        data = second.json()['data']
        self.assertEqual(len(data['blogs']), 20)
        self.assertTrue(data['next'].startswith('/api/blogs/home/?cursor='))
        self.assertIsNone(data['previous'])

        page_two = self.client.get(data['next'], HTTP_HOST='127.0.0.1').json()['data']
        self.assertEqual(len(page_two['blogs']), 5)
        self.assertTrue(page_two['previous'].startswith('/api/blogs/home/?cursor='))

    def test_not_found_is_not_cached(self):
        first = self.client.get('/api/blogs/no-such-post/')
        second = self.client.get('/api/blogs/no-such-post/')

        self.assertEqual(first.status_code, 404)
        self.assertEqual(second.status_code, 404)
        self.assertEqual(self.store.keys_matching('blog:*'), [])

    def test_detail_payload(self):
        comment = content.add_comment(self.post, self.author, 'First!')
        content.add_reply(comment, self.author, 'Reply')
        reader = User.objects.create_user('reader', 'r@test.com', 'pass')
        toggle_reaction(self.post, reader, 'likes')

        data = self.client.get(f'/api/blogs/{self.post.slug}/').json()['data']

        self.assertEqual(data['blog']['slug'], self.post.slug)
        self.assertEqual(data['blog']['reactions'], {'likes': [reader.id], 'dislikes': []})
        self.assertEqual(data['commentCount'], 1)
        self.assertEqual(len(data['blog']['comments']), 1)
        self.assertEqual(len(data['blog']['comments'][0]['replies']), 1)
        self.assertEqual(data['displayedReplies'], 3)
        self.assertIn('Tutorial', data['randomBlogByCategory'])

    def test_detail_queries_independent_of_comment_count(self):
        """The detail view must not issue one query per comment."""
        other = make_post(self.author, title='Busy post')
        for i in range(5):
            comment = content.add_comment(other, self.author, f'Comment {i}')
            for j in range(3):
                content.add_reply(comment, self.author, f'Reply {j}')

        quiet = make_post(self.author, title='Quiet post')
        content.add_comment(quiet, self.author, 'Only comment')

        ContentType.objects.get_for_models(Post, Comment)

        with CaptureQueriesContext(connection) as quiet_ctx:
            self.client.get(f'/api/blogs/{quiet.slug}/')
        with CaptureQueriesContext(connection) as busy_ctx:
            self.client.get(f'/api/blogs/{other.slug}/')

        self.assertEqual(len(busy_ctx), len(quiet_ctx))


class CacheDecoratorTestCase(CacheTestMixin, TestCase):
    """Test cache_response on a bare APIView."""

    def setUp(self):
        super().setUp()
        self.factory = APIRequestFactory()
        self.calls = 0
        test = self

        class CountingView(APIView):
            @cache_response('test', ttl=60)
            def get(self, request):
                test.calls += 1
                return Response({'calls': test.calls})

            @cache_response('test', ttl=60)
            def post(self, request):
                test.calls += 1
                return Response({'calls': test.calls})

        class FailingView(APIView):
            @cache_response('test', ttl=60)
            def get(self, request):
                test.calls += 1
                return Response({'error': 'nope'}, status=400)

        self.counting = CountingView.as_view()
        self.failing = FailingView.as_view()

    def test_get_cached(self):
        self.counting(self.factory.get('/x/'))
        response = self.counting(self.factory.get('/x/'))
        self.assertEqual(self.calls, 1)
        self.assertEqual(response.content, b'{"calls":1}')

    def test_post_bypasses_cache(self):
        self.counting(self.factory.post('/x/'))
        self.counting(self.factory.post('/x/'))
        self.assertEqual(self.calls, 2)
        self.assertEqual(self.store.keys_matching('test:*'), [])

    def test_errors_not_cached(self):
        self.failing(self.factory.get('/x/'))
        response = self.failing(self.factory.get('/x/'))
        self.assertEqual(self.calls, 2)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.store.keys_matching('test:*'), [])

    def test_store_without_client_always_misses(self):
        set_store(CacheStore())
        self.counting(self.factory.get('/x/'))
        self.counting(self.factory.get('/x/'))
        self.assertEqual(self.calls, 2)

    def test_key_functions(self):
        request = self.factory.get('/api/blogs/?cursor=abc')
        self.assertEqual(request_path_key(request), '/api/blogs/?cursor=abc')
        self.assertEqual(slug_key(request, slug='hello'), 'hello')
        self.assertEqual(slug_key(request), '/api/blogs/?cursor=abc')
        self.assertEqual(make_key('blog', 'hello'), 'blog:hello')
        self.assertEqual(blog_detail_key('hello'), 'blog:hello')


class InvalidationTestCase(CacheTestMixin, TestCase):
    """
    Test that writes clear the views that embed what they changed.

    on_commit callbacks only run inside captureOnCommitCallbacks here,
    since TestCase never commits.
    """

    def setUp(self):
        super().setUp()
        self.author = User.objects.create_user('author', 'a@test.com', 'pass')
        self.user = User.objects.create_user('user', 'u@test.com', 'pass')
        self.post = make_post(self.author)
        self.other = make_post(self.author, title='Unrelated post', category='News')
        self.client = APIClient()
        self.client.force_authenticate(self.user)

    def _warm(self):
        for url in (
            f'/api/blogs/{self.post.slug}/',
            f'/api/blogs/{self.other.slug}/',
            '/api/blogs/home/',
            '/api/blogs/categories/',
        ):
            self.assertEqual(self.client.get(url).status_code, 200)

    def test_reaction_invalidates_detail_and_listings(self):
        """P5: the next read after a toggle reflects it."""
        self._warm()

        with self.captureOnCommitCallbacks(execute=True):
            self.client.post(
                f'/api/blogs/{self.post.slug}/react/', {'reactionType': 'likes'}, format='json'
            )

        self.assertEqual(self.store.keys_matching('homepage:*'), [])
        self.assertEqual(self.store.keys_matching('category:*'), [])
        # Detail views of other posts do not carry counters of this one
        self.assertEqual(self.store.keys_matching('blog:*'), [blog_detail_key(self.other.slug)])

        response = self.client.get(f'/api/blogs/{self.post.slug}/')
        self.assertEqual(response['X-Cache'], 'MISS')
        self.assertEqual(response.json()['data']['blog']['like_count'], 1)

    def test_write_after_failed_read_still_invalidates(self):
        """A read failure must not let pre-write entries outlive the breaker window."""
        self._warm()

        with patch('blog.cache_store.time.monotonic', return_value=1000.0):
            with patch.object(self.redis, 'get', side_effect=redis.TimeoutError('slow')):
                with self.assertLogs('blog.cache_store', 'WARNING'):
                    self.client.get('/api/blogs/home/')

            with self.captureOnCommitCallbacks(execute=True):
                response = self.client.post(
                    f'/api/blogs/{self.post.slug}/react/', {'reactionType': 'likes'}, format='json'
                )
            self.assertEqual(response.status_code, 200)

        self.assertFalse(self.redis.exists(blog_detail_key(self.post.slug)))

        with patch('blog.cache_store.time.monotonic', return_value=1031.0):
            response = self.client.get(f'/api/blogs/{self.post.slug}/')
        self.assertEqual(response['X-Cache'], 'MISS')
        self.assertEqual(response.json()['data']['blog']['like_count'], 1)

    def test_deleting_user_releases_reactions(self):
        comment = content.add_comment(self.post, self.author, 'A comment')
        toggle_reaction(self.post, self.user, 'likes')
        toggle_reaction(comment, self.user, 'dislikes')
        self._warm()

        with self.captureOnCommitCallbacks(execute=True):
            self.user.delete()

        self.post.refresh_from_db()
        comment.refresh_from_db()
        self.assertEqual(self.post.like_count, 0)
        self.assertEqual(comment.dislike_count, 0)
        self.assertFalse(Reaction.objects.exists())
        self.assertEqual(self.store.keys_matching('blog:*'), [])
        self.assertEqual(self.store.keys_matching('homepage:*'), [])

        data = APIClient().get(f'/api/blogs/{self.post.slug}/').json()['data']
        self.assertEqual(data['blog']['reactions'], {'likes': [], 'dislikes': []})

    def test_invalidation_waits_for_commit(self):
        self._warm()

        with self.captureOnCommitCallbacks(execute=False) as callbacks:
            toggle_reaction(self.post, self.user, 'likes')
            self.assertIn(blog_detail_key(self.post.slug), self.store.keys_matching('blog:*'))

        self.assertEqual(len(callbacks), 1)
        callbacks[0]()
        self.assertNotIn(blog_detail_key(self.post.slug), self.store.keys_matching('blog:*'))

    def test_comment_shows_up_on_next_read(self):
        """Scenario D."""
        self._warm()

        with self.captureOnCommitCallbacks(execute=True):
            response = self.client.post(
                f'/api/blogs/{self.post.slug}/comment/', {'content': 'Fresh comment'}, format='json'
            )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data['data']['blogSlug'], self.post.slug)

        data = self.client.get(f'/api/blogs/{self.post.slug}/').json()['data']
        self.assertEqual([c['content'] for c in data['blog']['comments']], ['Fresh comment'])
        self.assertEqual(data['commentCount'], 1)

    def test_reply_reaction_invalidates_its_post(self):
        comment = content.add_comment(self.post, self.author, 'A comment')
        reply = content.add_reply(comment, self.author, 'A reply')
        self._warm()

        with self.captureOnCommitCallbacks(execute=True):
            self.client.post(f'/api/blogs/reply/{reply.id}/react/', {'reactionType': 'likes'}, format='json')

        data = self.client.get(f'/api/blogs/{self.post.slug}/').json()['data']
        self.assertEqual(data['blog']['comments'][0]['replies'][0]['like_count'], 1)

    def test_post_update_clears_every_detail_view(self):
        self._warm()
        old_slug = self.post.slug
        client = APIClient()
        client.force_authenticate(self.author)

        with self.captureOnCommitCallbacks(execute=True):
            response = client.patch(
                f'/api/blogs/{old_slug}/edit/', {'title': 'A brand new title'}, format='json'
            )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['data']['slug'], 'a-brand-new-title')

        self.assertEqual(self.store.keys_matching('blog:*'), [])
        self.assertEqual(self.client.get(f'/api/blogs/{old_slug}/').status_code, 404)

    def test_post_delete_clears_views(self):
        self._warm()
        client = APIClient()
        client.force_authenticate(self.author)

        with self.captureOnCommitCallbacks(execute=True):
            response = client.delete(f'/api/blogs/{self.post.slug}/')
        self.assertEqual(response.status_code, 200)

        home = self.client.get('/api/blogs/home/').json()['data']
        self.assertEqual([b['slug'] for b in home['blogs']], [self.other.slug])

    def test_post_create_clears_listings(self):
        self._warm()
        client = APIClient()
        client.force_authenticate(self.author)

        with self.captureOnCommitCallbacks(execute=True):
            response = client.post('/api/blogs/create/', {
                'title': 'Brand new',
                'description': 'Fresh',
                'content': 'Body text',
                'category': 'News',
                'tags': 'django, redis',
            }, format='json')
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data['data']['tags'], ['django', 'redis'])

        news = self.client.get('/api/blogs/categories/News/')
        self.assertEqual(news['X-Cache'], 'MISS')
        self.assertEqual(len(news.json()['data']), 2)

    def test_failed_delete_reports_incomplete(self):
        broken = CacheStore(self.redis)
        with patch.object(broken, 'delete_pattern', return_value=False):
            with self.assertLogs('blog.invalidation', 'WARNING'):
                ok = CacheInvalidator(broken).invalidate_post(self.post.slug)
        self.assertFalse(ok)

    def test_invalidate_for_comment_clears_its_post(self):
        comment = content.add_comment(self.post, self.author, 'A comment')
        self._warm()

        self.assertTrue(CacheInvalidator().invalidate_for(comment))

        remaining = self.store.keys_matching('blog:*')
        self.assertEqual(remaining, [blog_detail_key(self.other.slug)])
        self.assertEqual(self.store.keys_matching('homepage:*'), [])

    def test_affected_slug(self):
        comment = content.add_comment(self.post, self.author, 'A comment')
        reply = content.add_reply(comment, self.author, 'A reply')
        self.assertEqual(affected_slug(self.post), self.post.slug)
        self.assertEqual(affected_slug(comment), self.post.slug)
        self.assertEqual(affected_slug(reply), self.post.slug)


class CommitTimingTestCase(CacheTestMixin, TransactionTestCase):
    """Invalidation against real commits and rollbacks."""

    def setUp(self):
        super().setUp()
        self.author = User.objects.create_user('author', 'a@test.com', 'pass')
        self.user = User.objects.create_user('user', 'u@test.com', 'pass')
        self.post = make_post(self.author)
        self.key = blog_detail_key(self.post.slug)

    def test_commit_invalidates(self):
        self.store.set(self.key, b'{}', 60)
        toggle_reaction(self.post, self.user, 'likes')
        self.assertIsNone(self.store.get(self.key))

    def test_rollback_keeps_entry(self):
        self.store.set(self.key, b'{}', 60)
        with self.assertRaises(RuntimeError):
            with transaction.atomic():
                toggle_reaction(self.post, self.user, 'likes')
                raise RuntimeError('abort')

        self.assertEqual(self.store.get(self.key), b'{}')
        self.post.refresh_from_db()
        self.assertEqual(self.post.like_count, 0)

    def test_reply_delete_runs_in_one_transaction(self):
        comment = content.add_comment(self.post, self.author, 'A comment')
        reply = content.add_reply(comment, self.author, 'A reply')
        toggle_reaction(reply, self.user, 'likes')
        self.store.set(self.key, b'{}', 60)
        seen = []

        def check_author(obj, user, action):
            seen.append(connection.in_atomic_block)

        with patch('blog.content._ensure_author', side_effect=check_author):
            content.delete_reply(reply, self.author)

        self.assertEqual(seen, [True])
        self.assertFalse(Comment.objects.filter(id=reply.id).exists())
        self.assertFalse(Reaction.objects.exists())
        self.assertIsNone(self.store.get(self.key))


class ConcurrentToggleTestCase(CacheTestMixin, TransactionTestCase):
    """
    Parallel toggles on one post.

    With row locks (PostgreSQL) every toggle succeeds. SQLite rejects
    concurrent writers instead, so some toggles may come back as
    StorageUnavailable; either way no toggle is half applied.
    """

    def test_parallel_toggles_keep_counters_and_sets_in_step(self):
        author = User.objects.create_user('author', 'a@test.com', 'pass')
        users = [User.objects.create_user(f'u{i}', f'u{i}@test.com', 'pass') for i in range(4)]
        post = make_post(author)
        ContentType.objects.get_for_models(Post, Comment)

        barrier = threading.Barrier(len(users))
        outcomes = []

        def worker(user):
            try:
                target = Post.objects.get(id=post.id)
                barrier.wait(timeout=10)
                toggle_reaction(target, user, 'likes')
                outcomes.append('ok')
            except StorageUnavailable:
                outcomes.append('unavailable')
            finally:
                connection.close()

        threads = [threading.Thread(target=worker, args=(user,)) for user in users]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        self.assertEqual(len(outcomes), len(users))

        post.refresh_from_db()
        (entry,) = reaction_sets([post]).values()
        self.assertEqual(len(entry['likes']), outcomes.count('ok'))
        self.assertEqual(post.like_count, len(entry['likes']))
        self.assertEqual(post.dislike_count, 0)


class CacheStoreTestCase(CacheTestMixin, TestCase):
    """Test the store adapter and its circuit breaker."""

    def _broken_client(self):
        client = MagicMock()
        error = redis.ConnectionError('connection refused')
        client.ping.side_effect = error
        client.get.side_effect = error
        client.set.side_effect = error
        client.delete.side_effect = error
        client.scan_iter.side_effect = error
        return client

    def test_basic_operations(self):
        self.assertTrue(self.store.set('blog:a', b'1', 60))
        self.assertTrue(self.store.set('blog:b', b'2', 60))
        self.assertTrue(self.store.set('homepage:/', b'3', 60))

        self.assertEqual(self.store.get('blog:a'), b'1')
        self.assertEqual(sorted(self.store.keys_matching('blog:*')), ['blog:a', 'blog:b'])

        self.assertTrue(self.store.delete_pattern('blog:*'))
        self.assertEqual(self.store.keys_matching('blog:*'), [])
        self.assertEqual(self.store.get('homepage:/'), b'3')

        self.assertTrue(self.store.delete('homepage:/'))
        self.assertIsNone(self.store.get('homepage:/'))

    def test_delete_pattern_in_batches(self):
        for i in range(cache_store.SCAN_BATCH + 10):
            self.redis.set(f'blog:{i}', b'x')
        self.assertTrue(self.store.delete_pattern('blog:*'))
        self.assertEqual(self.store.keys_matching('blog:*'), [])

    def test_failures_become_misses(self):
        store = CacheStore(self._broken_client())
        with self.assertLogs('blog.cache_store', 'WARNING'):
            self.assertIsNone(store.get('blog:a'))
        self.assertFalse(store.available)
        self.assertFalse(store.set('blog:a', b'1', 60))
        self.assertFalse(store.delete_pattern('blog:*'))
        self.assertEqual(store.keys_matching('blog:*'), [])

    def test_circuit_breaker_skips_calls_until_retry(self):
        client = self._broken_client()
        store = CacheStore(client, retry_after=30)

        with patch('blog.cache_store.time.monotonic', return_value=1000.0):
            with self.assertLogs('blog.cache_store', 'WARNING'):
                store.get('blog:a')
            store.get('blog:a')
            store.get('blog:a')
        self.assertEqual(client.get.call_count, 1)

        client.get.side_effect = None
        client.get.return_value = b'back'
        with patch('blog.cache_store.time.monotonic', return_value=1031.0):
            self.assertEqual(store.get('blog:a'), b'back')
        self.assertEqual(client.get.call_count, 2)

    def test_deletes_ignore_open_breaker(self):
        self.redis.set('blog:a', b'1')
        self.redis.set('homepage:/', b'2')

        with patch.object(self.redis, 'get', side_effect=redis.TimeoutError('slow')):
            with self.assertLogs('blog.cache_store', 'WARNING'):
                self.assertIsNone(self.store.get('blog:a'))
        self.assertFalse(self.store.available)

        self.assertTrue(self.store.delete('blog:a'))
        self.assertTrue(self.store.delete_pattern('homepage:*'))
        self.assertFalse(self.redis.exists('blog:a'))
        self.assertFalse(self.redis.exists('homepage:/'))

    def test_store_without_client_fails_deletes(self):
        store = CacheStore()
        self.assertTrue(store.delete())
        self.assertFalse(store.delete('blog:a'))
        self.assertFalse(store.delete_pattern('blog:*'))

    def test_connect_installs_store(self):
        fake = fakeredis.FakeRedis()
        with patch('blog.cache_store.redis.Redis.from_url', return_value=fake):
            store = cache_store.connect('redis://localhost:6379/0')

        self.assertIs(get_store(), store)
        self.assertIs(store.client, fake)
        # Previous store was closed
        self.assertIsNone(self.store.client)

    def test_connect_to_dead_redis_logs_and_continues(self):
        with patch('blog.cache_store.redis.Redis.from_url', return_value=self._broken_client()):
            with self.assertLogs('blog.cache_store', 'WARNING'):
                store = cache_store.connect('redis://localhost:1/0')
        self.assertIs(get_store(), store)
        self.assertFalse(store.available)

    def test_close(self):
        self.store.close()
        self.assertIsNone(self.store.client)
        self.assertIsNone(self.store.get('blog:a'))


class DegradedModeTestCase(CacheTestMixin, TestCase):
    """
    P6: with the cache unreachable every endpoint still answers correctly.
    """

    def setUp(self):
        super().setUp()
        client = MagicMock()
        error = redis.TimeoutError('timed out')
        for name in ('get', 'set', 'delete', 'scan_iter', 'ping'):
            getattr(client, name).side_effect = error
        set_store(CacheStore(client))

        self.author = User.objects.create_user('author', 'a@test.com', 'pass')
        self.user = User.objects.create_user('user', 'u@test.com', 'pass')
        self.post = make_post(self.author)
        self.client = APIClient()
        self.client.force_authenticate(self.user)

    def test_reads_and_writes_still_work(self):
        with self.assertLogs('blog', 'WARNING'):
            home = self.client.get('/api/blogs/home/')
            with self.captureOnCommitCallbacks(execute=True):
                react = self.client.post(
                    f'/api/blogs/{self.post.slug}/react/', {'reactionType': 'likes'}, format='json'
                )
                comment = self.client.post(
                    f'/api/blogs/{self.post.slug}/comment/', {'content': 'Hello'}, format='json'
                )
            detail = self.client.get(f'/api/blogs/{self.post.slug}/')

        self.assertEqual(home.status_code, 200)
        self.assertEqual(react.status_code, 200)
        self.assertEqual(comment.status_code, 201)
        self.assertEqual(detail.status_code, 200)
        self.assertEqual(detail['X-Cache'], 'MISS')

        data = detail.json()['data']
        self.assertEqual(data['blog']['like_count'], 1)
        self.assertEqual(len(data['blog']['comments']), 1)


class ContentWriteTestCase(CacheTestMixin, TestCase):
    """Posts, comments and replies: authorship and tree rules."""

    def setUp(self):
        super().setUp()
        self.author = User.objects.create_user('author', 'a@test.com', 'pass')
        self.stranger = User.objects.create_user('stranger', 's@test.com', 'pass')
        self.post = make_post(self.author)
        self.comment = content.add_comment(self.post, self.author, 'A comment')
        self.client = APIClient()
        self.client.force_authenticate(self.author)
        self.stranger_client = APIClient()
        self.stranger_client.force_authenticate(self.stranger)

    def test_slug_collisions_and_reserved_words(self):
        again = make_post(self.author)
        self.assertEqual(again.slug, f'{self.post.slug}-2')
        self.assertEqual(make_post(self.author, title='Home').slug, 'home-post')

    def test_comment_count_tracks_top_level_only(self):
        content.add_reply(self.comment, self.author, 'A reply')
        self.post.refresh_from_db()
        self.assertEqual(self.post.comment_count, 1)

        content.delete_comment(self.comment, self.author)
        self.post.refresh_from_db()
        self.assertEqual(self.post.comment_count, 0)
        self.assertFalse(Comment.objects.filter(post=self.post).exists())

    def test_reply_to_reply_rejected(self):
        reply = content.add_reply(self.comment, self.author, 'A reply')
        response = self.client.post(
            f'/api/blogs/comment/{reply.id}/reply/', {'content': 'Too deep'}, format='json'
        )
        self.assertEqual(response.status_code, 400)
        self.assertFalse(response.data['success'])

    def test_reply_create(self):
        response = self.stranger_client.post(
            f'/api/blogs/comment/{self.comment.id}/reply/', {'content': 'Agreed'}, format='json'
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data['data']['reply']['parent'], self.comment.id)
        self.assertEqual(response.data['data']['blogSlug'], self.post.slug)

    def test_empty_comment_rejected(self):
        response = self.client.post(
            f'/api/blogs/{self.post.slug}/comment/', {'content': '   '}, format='json'
        )
        self.assertEqual(response.status_code, 400)

    def test_only_author_edits_comment(self):
        response = self.stranger_client.patch(
            f'/api/blogs/comment/{self.comment.id}/', {'content': 'Hijacked'}, format='json'
        )
        self.assertEqual(response.status_code, 403)
        self.assertFalse(response.data['success'])

        response = self.client.patch(
            f'/api/blogs/comment/{self.comment.id}/', {'content': 'Edited'}, format='json'
        )
        self.assertEqual(response.status_code, 200)
        self.comment.refresh_from_db()
        self.assertEqual(self.comment.content, 'Edited')

    def test_only_author_deletes_reply(self):
        reply = content.add_reply(self.comment, self.author, 'A reply')
        response = self.stranger_client.delete(f'/api/blogs/reply/{reply.id}/')
        self.assertEqual(response.status_code, 403)

        response = self.client.delete(f'/api/blogs/reply/{reply.id}/')
        self.assertEqual(response.status_code, 200)
        self.assertFalse(Comment.objects.filter(id=reply.id).exists())

    def test_comment_routes_reject_replies_and_vice_versa(self):
        reply = content.add_reply(self.comment, self.author, 'A reply')
        self.assertEqual(
            self.client.patch(f'/api/blogs/comment/{reply.id}/', {'content': 'x'}, format='json').status_code,
            404
        )
        self.assertEqual(
            self.client.patch(f'/api/blogs/reply/{self.comment.id}/', {'content': 'x'}, format='json').status_code,
            404
        )

    def test_only_author_edits_post(self):
        response = self.stranger_client.put(f'/api/blogs/{self.post.slug}/edit/', {
            'title': 'Mine now',
            'description': 'x',
            'content': 'y',
        }, format='json')
        self.assertEqual(response.status_code, 403)

    def test_edit_form_payload(self):
        response = self.client.get(f'/api/blogs/{self.post.slug}/edit/')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['data']['content'], self.post.content)

    def test_deleting_comment_removes_its_reactions(self):
        toggle_reaction(self.comment, self.stranger, 'likes')
        content.delete_comment(self.comment, self.author)
        self.assertFalse(Reaction.objects.exists())


class CommentTreeTestCase(TestCase):

    def setUp(self):
        self.user = User.objects.create_user('user', 'u@test.com', 'pass')
        self.post = make_post(self.user)

    def test_tree_building(self):
        c1 = content.add_comment(self.post, self.user, 'Comment 1')
        c2 = content.add_comment(self.post, self.user, 'Comment 2')
        r1 = content.add_reply(c1, self.user, 'Reply 1')
        r2 = content.add_reply(c1, self.user, 'Reply 2')

        tree = build_comment_tree(get_comments_for_post(self.post.id))

        self.assertEqual([node['comment'].id for node in tree], [c1.id, c2.id])
        self.assertEqual([r.id for r in tree[0]['replies']], [r1.id, r2.id])
        self.assertEqual(tree[1]['replies'], [])


class SeedDataTestCase(TestCase):

    def test_seed_data_is_consistent(self):
        out = StringIO()
        call_command('seed_data', users=3, posts=4, comments=12, stdout=out)

        self.assertIn('Successfully created', out.getvalue())
        self.assertEqual(Post.objects.count(), 4)
        self.assertEqual(Comment.objects.count(), 12)

        for post in Post.objects.all():
            sets = reaction_sets([post])
            (entry,) = sets.values()
            self.assertEqual(post.like_count, len(entry['likes']))
            self.assertEqual(post.dislike_count, len(entry['dislikes']))
            self.assertEqual(post.comment_count, post.comments.filter(parent__isnull=True).count())
