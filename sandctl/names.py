"""
Human-readable session names.

Sessions are named after a random entry from a fixed pool of first names,
skipping any name already used by a stored session.
"""

from __future__ import annotations

import random
from typing import Iterable, Optional, Sequence

from sandctl.exceptions import PoolExhaustedError

# Attempts at a random pick before falling back to a linear scan.
MAX_RETRIES = 10

# 250 curated first names: lowercase, 2-15 characters, easy to type.
NAME_POOL: tuple[str, ...] = (
    "adam", "alex", "alice", "amber", "amy",
    "andrew", "angela", "anna", "anthony", "ashley",
    "austin", "bailey", "barbara", "ben", "beth",
    "blake", "brandon", "brian", "brooke", "bruce",
    "cameron", "carl", "carlos", "carol", "casey",
    "charles", "chelsea", "chris", "claire", "clark",
    "colin", "connor", "craig", "crystal", "daniel",
    "david", "dean", "denise", "derek", "diana",
    "diego", "donna", "douglas", "dylan", "edward",
    "elena", "elijah", "elizabeth", "emily", "emma",
    "eric", "ethan", "evan", "faith", "felix",
    "fernando", "finn", "frank", "gabriel", "gary",
    "george", "grace", "graham", "grant", "greg",
    "hailey", "hannah", "harold", "harry", "heather",
    "henry", "holly", "ian", "iris", "isaac",
    "ivan", "jack", "jacob", "james", "jane",
    "jason", "jay", "jennifer", "jeremy", "jesse",
    "jessica", "jill", "jimmy", "joan", "joe",
    "john", "jordan", "joseph", "joshua", "juan",
    "julia", "julian", "julie", "justin", "karen",
    "kate", "katherine", "keith", "kelly", "kenneth",
    "kevin", "kim", "kyle", "lance", "laura",
    "lauren", "lawrence", "leo", "leon", "leslie",
    "liam", "lily", "linda", "lisa", "logan",
    "louis", "lucas", "lucy", "luis", "luke",
    "madison", "maggie", "marcus", "margaret", "maria",
    "mark", "martin", "mary", "mason", "matthew",
    "max", "megan", "melissa", "michael", "michelle",
    "miguel", "mike", "miles", "mitchell", "molly",
    "monica", "morgan", "nancy", "natalie", "nathan",
    "neil", "nicholas", "nicole", "noah", "nolan",
    "oliver", "olivia", "oscar", "owen", "pamela",
    "patricia", "patrick", "paul", "peter", "philip",
    "rachel", "ralph", "randy", "raymond", "rebecca",
    "richard", "rick", "robert", "robin", "roger",
    "ronald", "rose", "roy", "ruby", "russell",
    "ruth", "ryan", "sally", "sam", "samantha",
    "sandra", "sara", "sarah", "scott", "sean",
    "seth", "shane", "shannon", "sharon", "shawn",
    "sheila", "simon", "sofia", "sophia", "spencer",
    "stephanie", "stephen", "steve", "steven", "stuart",
    "susan", "sydney", "taylor", "teresa", "terry",
    "thomas", "timothy", "tina", "todd", "tom",
    "tony", "tracy", "travis", "trevor", "tyler",
    "vanessa", "victor", "victoria", "vincent", "walter",
    "wayne", "wendy", "wesley", "william", "wyatt",
    "xavier", "zachary", "zoe", "adrian", "aiden",
    "alan", "albert", "alexander", "alexis", "alicia",
    "allison", "amanda", "andre", "andrea", "angel",
    "anne", "april", "arthur", "audrey", "autumn",
)

_system_random = random.SystemRandom()


def normalize_name(name: str) -> str:
    """Lowercase and trim a name for case-insensitive comparison."""
    return name.strip().lower()


def generate_name(
    used_names: Iterable[str],
    *,
    rng: Optional[random.Random] = None,
    pool: Sequence[str] = NAME_POOL,
    max_retries: int = MAX_RETRIES,
) -> str:
    """
    Pick a pool name that is not in used_names.

    Tries up to max_retries random draws, then scans the pool in order for
    the first free entry.

    Raises:
        PoolExhaustedError: If every pool entry is already used.
    """
    used = {normalize_name(name) for name in used_names}
    rng = rng or _system_random

    if pool:
        for _ in range(max_retries):
            candidate = rng.choice(pool)
            if candidate not in used:
                return candidate

    for candidate in pool:
        if candidate not in used:
            return candidate

    raise PoolExhaustedError(len(pool))
