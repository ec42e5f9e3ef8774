"""
Ascend — XP, Levels, Badges & Leaderboards for Online Communities
==================================================================
Turns community activity events into experience points, derives levels
from a non-linear curve, awards badges from ledger history and serves
cached leaderboards.

Package layout::

    ascend/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Level curve + grant/leaderboard limits
    ├── errors.py          # Domain exception taxonomy
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   ├── models.py      # All ORM models (8 tables)
    │   └── seed.py        # Demo company seeder
    ├── engine/
    │   ├── events.py      # ActivityEvent + rule condition matching
    │   ├── requirements.py # Badge requirement variants + evaluators
    │   ├── cache.py       # Leaderboard result cache (memory / Redis)
    │   └── deadline.py    # Caller-supplied deadlines
    ├── services/
    │   ├── ledger.py              # Member aggregate + XP ledger store
    │   ├── xp_service.py          # XP grant engine
    │   ├── badge_service.py       # Badge evaluation + awarding
    │   ├── event_service.py       # Activity event → XP rules
    │   ├── leaderboard_service.py # Ranked views + rank lookup
    │   ├── reward_service.py      # Reward claims + handler dispatch
    │   ├── notifications.py       # Level-up / badge / reward notices
    │   └── log_buffer.py          # Recent-log ring buffer + timing
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # Dependency providers
        └── routes/        # Webhook, XP, member, reward, log endpoints
"""

__version__ = "0.1.0"
