"""
Static seed datasets.

Served as the last resort when a provider can be neither reached nor
answered from a cached response, so callers always get something to show.
"""
import datetime
import time

from ..models import LaunchPost, DiscussionPost, RepositoryProject


def seed_launches():
    return [
        LaunchPost(
            id='seed-1',
            name='AI Code Assistant',
            tagline='Write better code with AI',
            description=('An intelligent code assistant that helps developers '
                         'write cleaner, more efficient code.'),
            votes_count=1247,
            comments_count=89,
            created_at=datetime.datetime.now(datetime.timezone.utc).isoformat(),
            user_name='John Doe',
            user_username='johndoe',
            topics=['Developer Tools', 'AI']
        )
    ]


def seed_discussions():
    return [
        DiscussionPost(
            id=1,
            title='Show HN: I built a JavaScript framework for modern web apps',
            url='https://example.com/javascript-framework',
            score=256,
            by='jsdev',
            time=int(time.time()),
            descendants=45
        )
    ]


def seed_repositories():
    return [
        RepositoryProject(
            id='seed-1',
            name='Slack',
            description='Team communication and collaboration platform',
            website_url='https://slack.com',
            logo_url='',
            stars=0,
            rating=4.5,
            pricing='Free - $12.50/user/month',
            category='Communication',
            features=['Messaging', 'File sharing', 'Video calls']
        )
    ]
