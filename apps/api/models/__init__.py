"""Models package."""

from .user import User
from .post import Post, PostMedia, PostVisibility
from .post_boost import PostBoost, BoostStatus
from .friendship import Friendship, FriendshipStatus
from .user_location import UserLocation
from .reaction import Reaction
