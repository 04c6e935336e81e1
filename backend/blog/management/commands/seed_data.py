"""
Management command to seed the database with sample data.

Usage: python manage.py seed_data
"""

import random
from datetime import timedelta
from django.core.management.base import BaseCommand
from django.contrib.auth.models import User
from django.utils import timezone

from blog import content
from blog.models import Post, Comment, Reaction, ReactionType
from blog.services import toggle_reaction

CATEGORIES = ['Article', 'Tutorial', 'News', 'Opinion']


class Command(BaseCommand):
    help = 'Seed the database with sample data for testing'

    def add_arguments(self, parser):
        parser.add_argument(
            '--users',
            type=int,
            default=10,
            help='Number of users to create'
        )
        parser.add_argument(
            '--posts',
            type=int,
            default=20,
            help='Number of posts to create'
        )
        parser.add_argument(
            '--comments',
            type=int,
            default=100,
            help='Number of comments and replies to create'
        )
        parser.add_argument(
            '--clear',
            action='store_true',
            help='Clear existing data before seeding'
        )

    def handle(self, *args, **options):
        if options['clear']:
            self.stdout.write('Clearing existing data...')
            Reaction.objects.all().delete()
            Comment.objects.all().delete()
            Post.objects.all().delete()
            User.objects.filter(is_superuser=False).delete()

        self.stdout.write('Creating users...')
        users = self._create_users(options['users'])

        self.stdout.write('Creating posts...')
        posts = self._create_posts(users, options['posts'])

        self.stdout.write('Creating comments...')
        comments = self._create_comments(users, posts, options['comments'])

        self.stdout.write('Creating reactions...')
        reactions = self._create_reactions(users, posts, comments)

        self.stdout.write(self.style.SUCCESS(
            f'Successfully created:\n'
            f'  - {len(users)} users\n'
            f'  - {len(posts)} posts\n'
            f'  - {len(comments)} comments and replies\n'
            f'  - {reactions} reactions'
        ))

    def _create_users(self, count):
        users = []
        for i in range(count):
            username = f'user{i+1}'
            user = User.objects.filter(username=username).first()
            if user is None:
                user = User.objects.create_user(
                    username=username,
                    email=f'{username}@example.com',
                    password='password123'
                )
            users.append(user)
        return users

    def _create_posts(self, users, count):
        posts = []
        titles = [
            "Getting started with",
            "A deep dive into",
            "Lessons learned from",
            "Why I switched to",
            "Notes on",
            "The case against",
        ]
        subjects = ["caching", "Django", "Redis", "REST APIs", "testing", "deployment"]

        for i in range(count):
            post = content.create_post(
                author=random.choice(users),
                title=f"{random.choice(titles)} {random.choice(subjects)} #{i+1}",
                description="A short summary of the post.",
                content=f"Lorem ipsum dolor sit amet, consectetur adipiscing elit.\n\nPost #{i+1}",
                category=random.choice(CATEGORIES),
                tags=random.sample(subjects, k=2),
            )
            Post.objects.filter(id=post.id).update(
                created_at=timezone.now() - timedelta(hours=random.randint(0, 48))
            )
            posts.append(post)
        return posts

    def _create_comments(self, users, posts, count):
        comments = []
        comment_texts = [
            "Great point! I totally agree.",
            "Hmm, I'm not sure about this...",
            "Thanks for sharing!",
            "Can you elaborate on this?",
            "Well said!",
        ]

        for _ in range(count):
            post = random.choice(posts)

            # 30% chance of being a reply to an existing top-level comment
            candidates = [c for c in comments if c.post_id == post.id and c.parent_id is None]
            if candidates and random.random() < 0.3:
                comment = content.add_reply(
                    random.choice(candidates),
                    random.choice(users),
                    random.choice(comment_texts)
                )
            else:
                comment = content.add_comment(post, random.choice(users), random.choice(comment_texts))
            comments.append(comment)

        return comments

    def _create_reactions(self, users, posts, comments):
        created = 0
        for target in [*posts, *comments]:
            reactors = random.sample(users, k=min(len(users), random.randint(0, 4)))
            for user in reactors:
                kind = ReactionType.LIKE if random.random() < 0.8 else ReactionType.DISLIKE
                toggle_reaction(target, user, kind)
                created += 1
        return created
