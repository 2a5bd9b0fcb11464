import pytest

from reddit_monitor.database import Database
from reddit_monitor.models import Post, PostType


def _make_post(post_id: str = "v6nu75", subreddit: str = "absoluteunit",
               title: str = "Tipping a cow to trim its hooves") -> Post:
    return Post(
        id=post_id,
        subreddit=subreddit,
        title=title,
        created=1654581100.0,
        post_type=PostType.VIDEO,
        permalink=f"/r/{subreddit}/comments/{post_id}/tipping_a_cow_to_trim_its_hooves/",
        url="https://i.imgur.com/Zt6f5mB.gifv",
        ups=469,
    )


@pytest.fixture
def make_post():
    return _make_post


@pytest.fixture
def post() -> Post:
    return _make_post()


@pytest.fixture
def db():
    database = Database()
    database.migrate()
    yield database
    database.close()
