"""
Theme catalog.

Each theme labels the two poles of the 1–100 scale. NORMAL themes are
family-friendly; ABNORMAL ones are the party-night pool the host opts into
from the lobby settings.
"""
from typing import List

from models.game import Genre, Theme


THEMES: List[Theme] = [
    # ── NORMAL ────────────────────────────────────────────────────────────────
    Theme(text="Foods you would take to a desert island", min_label="useless", max_label="life-saving"),
    Theme(text="How scary is this animal", min_label="cuddly", max_label="terrifying"),
    Theme(text="Popularity of a school-lunch menu item", min_label="nobody eats it", max_label="sold out"),
    Theme(text="Things that make you happy", min_label="a little", max_label="ecstatic"),
    Theme(text="Superpowers you would want", min_label="pointless", max_label="essential"),
    Theme(text="How strong is this creature", min_label="weak", max_label="unbeatable"),
    Theme(text="Things you would buy with a bonus", min_label="cheap treat", max_label="dream purchase"),
    Theme(text="How hard is this job", min_label="easy", max_label="brutal"),
    Theme(text="Sounds in the morning", min_label="soothing", max_label="unbearable"),
    Theme(text="Gifts for a first date", min_label="awkward", max_label="perfect"),
    Theme(text="How tasty is this snack", min_label="bland", max_label="addictive"),
    Theme(text="Places to spend a holiday", min_label="boring", max_label="unforgettable"),
    Theme(text="Things a hero would say", min_label="lame", max_label="legendary"),
    Theme(text="How rare is this event", min_label="every day", max_label="once in a lifetime"),
    # ── ABNORMAL ──────────────────────────────────────────────────────────────
    Theme(text="Excuses for being late", min_label="believable", max_label="absurd", genre=Genre.ABNORMAL),
    Theme(text="Things you should not say to your boss", min_label="harmless", max_label="career-ending", genre=Genre.ABNORMAL),
    Theme(text="Weird habits of a roommate", min_label="charming", max_label="move out now", genre=Genre.ABNORMAL),
    Theme(text="How cursed is this object", min_label="lucky charm", max_label="doomed", genre=Genre.ABNORMAL),
    Theme(text="Pickup lines", min_label="cringe", max_label="smooth", genre=Genre.ABNORMAL),
    Theme(text="Secrets you would keep forever", min_label="trivial", max_label="take it to the grave", genre=Genre.ABNORMAL),
    Theme(text="Questionable pizza toppings", min_label="acceptable", max_label="crime", genre=Genre.ABNORMAL),
    Theme(text="Reasons to cancel plans", min_label="fair", max_label="unforgivable", genre=Genre.ABNORMAL),
]


NPC_NAMES: List[str] = [
    "NPC Taro",
    "NPC Hanako",
    "NPC Jiro",
    "NPC Yumi",
    "NPC Ken",
    "NPC Sora",
    "NPC Rin",
    "NPC Goro",
    "NPC Mei",
    "NPC Haru",
]
