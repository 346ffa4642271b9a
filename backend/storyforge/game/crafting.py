"""合成解析：规范化原料、配方记忆、未命中时调用生成服务。

同一原料组合在整个图的生命周期内至多对应一个产物。并发的相同请求
依赖 Recipe.canonical_key 主键约束决出唯一写入者，失败方重读已提交的
配方并返回其产物（first_discovery=False），冲突不会暴露给调用方。
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Sequence

from pydantic import ValidationError as PydanticValidationError

from storyforge.errors import (
    ConflictError,
    InternalError,
    ProviderError,
    ValidationError,
)
from storyforge.game.spells import fetch_spell, insert_spell, spell_names
from storyforge.models import CraftingProduct, CraftingResult, Recipe, Spell, UserRef
from storyforge.services.llm_engine import CraftingProvider
from storyforge.storage.graph import GraphStore
from storyforge.storage.transaction import TransactionContext

logger = logging.getLogger(__name__)


def canonicalize(ingredient_ids: Sequence[str], *, deduplicate: bool = False) -> list[str]:
    """升序排列原料 id；默认保留重复（数量有意义，顺序无意义）。"""
    if isinstance(ingredient_ids, (str, bytes)) or not isinstance(
        ingredient_ids, (list, tuple)
    ):
        raise ValidationError("ingredient_ids must be a list of spell ids")
    if not ingredient_ids:
        raise ValidationError("ingredient_ids must not be empty")
    for spell_id in ingredient_ids:
        if not isinstance(spell_id, str) or not spell_id.strip():
            raise ValidationError(f"invalid ingredient id: {spell_id!r}")
    ids = set(ingredient_ids) if deduplicate else ingredient_ids
    return sorted(ids)


def canonical_key(ingredients: Sequence[str]) -> str:
    return json.dumps(list(ingredients), separators=(",", ":"))


class CraftingResolver:
    """配方记忆的唯一所有者（Spell / Recipe 记录）。"""

    def __init__(
        self,
        store: GraphStore,
        provider: CraftingProvider,
        *,
        deduplicate_ingredients: bool = False,
    ):
        self.store = store
        self.provider = provider
        self.deduplicate_ingredients = deduplicate_ingredients

    def find_recipe(self, tx: TransactionContext, key: str) -> Recipe | None:
        row = tx.fetch_one(
            "MATCH (r:Recipe) WHERE r.canonical_key = $key "
            "RETURN r.canonical_key, r.ingredients, r.product_id, r.created_at, r.created_by;",
            {"key": key},
        )
        if row is None:
            return None
        return Recipe(
            canonical_key=row[0],
            ingredients=row[1],
            product=row[2],
            created_at=datetime.fromisoformat(row[3]) if row[3] else None,
            created_by=UserRef(user_id=row[4]) if row[4] else None,
        )

    def lookup(self, tx: TransactionContext, key: str) -> Spell | None:
        recipe = self.find_recipe(tx, key)
        if recipe is None:
            return None
        return fetch_spell(tx, recipe.product)

    def record_product(
        self,
        tx: TransactionContext,
        *,
        ingredients: Sequence[str],
        product: CraftingProduct,
        user_id: str,
    ) -> Spell:
        """在同一事务内写入新法术与配方；键冲突以 ConflictError 抛出。"""
        spell = insert_spell(
            tx,
            name=product.name,
            emoji=product.emoji,
            description=product.description,
            created_by=user_id,
        )
        tx.execute(
            "CREATE (:Recipe {canonical_key: $key, ingredients: $ingredients, "
            "product_id: $product_id, created_at: $created_at, created_by: $created_by});",
            {
                "key": canonical_key(ingredients),
                "ingredients": list(ingredients),
                "product_id": spell.spell_id,
                "created_at": tx.timestamp,
                "created_by": user_id,
            },
        )
        return spell

    async def _generate(self, names: list[str]) -> CraftingProduct:
        try:
            product = await self.provider.craft(names)
            if not isinstance(product, CraftingProduct):
                product = CraftingProduct.model_validate(product)
        except ProviderError:
            raise
        except PydanticValidationError as exc:
            raise ProviderError(f"Provider returned an invalid product: {exc}") from exc
        except Exception as exc:
            raise ProviderError(f"Provider failed: {type(exc).__name__}: {exc}") from exc
        return product

    def _reread(self, key: str) -> CraftingResult:
        with self.store.begin(read_only=True) as tx:
            spell = self.lookup(tx, key)
        if spell is None:
            raise InternalError(f"Recipe conflict without committed recipe: key={key}")
        return CraftingResult(product=spell, first_discovery=False)

    async def craft(self, user_id: str, ingredient_ids: Sequence[str]) -> CraftingResult:
        ingredients = canonicalize(
            ingredient_ids, deduplicate=self.deduplicate_ingredients
        )
        key = canonical_key(ingredients)

        with self.store.begin(read_only=True) as tx:
            existing = self.lookup(tx, key)
            names = spell_names(tx, ingredients) if existing is None else []
        if existing is not None:
            return CraftingResult(product=existing, first_discovery=False)

        # 生成期间不持有事务
        product = await self._generate(names)

        try:
            with self.store.begin() as tx:
                existing = self.lookup(tx, key)
                if existing is not None:
                    logger.info("recipe %s was discovered concurrently", key)
                    return CraftingResult(product=existing, first_discovery=False)
                spell = self.record_product(
                    tx, ingredients=ingredients, product=product, user_id=user_id
                )
        except ConflictError:
            logger.info("recipe %s insert lost the race, re-reading", key)
            return self._reread(key)

        logger.info(
            "first discovery: %s %s from %s by %s",
            spell.emoji,
            spell.name,
            names,
            user_id,
        )
        return CraftingResult(product=spell, first_discovery=True)
