"""
Shamba — Community Engagement Backend for an Agricultural Platform
===================================================================
Stores discussion posts and questions, classifies them with categories
and tags, tracks social signals (likes, bookmarks, reactions) and runs
capacity-bounded event registration for workshops, webinars and field
visits.

Package layout::

    shamba/
    ├── config.py          # YAML → typed community config
    ├── constants.py       # Enumerated values, display messages, slugify
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   ├── models.py      # All ORM models
    │   ├── queries.py     # Named SELECT shapes (post with tags, …)
    │   └── seed.py        # Default categories & tags
    ├── services/
    │   ├── result.py               # Result / ServiceError / guarded
    │   ├── taxonomy_service.py     # Categories, tags, tag-set replacement
    │   ├── content_service.py      # Posts, comments, questions, answers
    │   ├── engagement_service.py   # Likes, bookmarks, reactions, notifications
    │   ├── event_service.py        # Events + capacity-controlled registration
    │   └── aggregation_service.py  # Derived counts, trending, stats
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # Engine, config, bearer-token identity
        ├── responses.py   # Result → HTTP status
        └── routes/        # Posts, questions, events, engagement, community
"""

__version__ = "0.1.0"
