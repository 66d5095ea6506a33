"""Owner of the working action list for one session."""

from collections.abc import Callable
from dataclasses import dataclass, field, replace

from health_assistant.domain.actions import Action, MealData, MealItem


@dataclass
class ActionStore:
    """Holds the action list and applies id-keyed structural updates."""

    _actions: list[Action] = field(default_factory=list)
    generation: int = 0

    def all(self) -> list[Action]:
        """Return the current action list."""
        return self._actions

    def replace_all(self, actions: list[Action]) -> None:
        """Swap the whole list, e.g. after reconciliation."""
        self._actions = list(actions)

    def next_generation(self) -> int:
        """Start a new planning generation and return its number."""
        self.generation += 1
        return self.generation

    def get(self, action_id: str) -> Action | None:
        """Return an action by id."""
        for action in self._actions:
            if action.id == action_id:
                return action
        return None

    def get_item(self, action_id: str, item_key: str) -> MealItem | None:
        """Return a meal item by action id and item key."""
        action = self.get(action_id)
        if action is None:
            return None
        for item in action.meal_items():
            if item.key == item_key:
                return item
        return None

    def update(
        self, action_id: str, update: Callable[[Action], Action]
    ) -> Action | None:
        """Replace one action with update(action); missing ids are ignored."""
        updated: Action | None = None
        actions: list[Action] = []
        for action in self._actions:
            if action.id == action_id:
                updated = update(action)
                actions.append(updated)
            else:
                actions.append(action)
        self._actions = actions
        return updated

    def update_item(
        self, action_id: str, item_key: str, update: Callable[[MealItem], MealItem]
    ) -> MealItem | None:
        """Replace one meal item with update(item); missing targets are ignored."""
        if self.get_item(action_id, item_key) is None:
            return None
        result: list[MealItem] = []

        def apply(action: Action) -> Action:
            if not isinstance(action.data, MealData):
                return action
            items: list[MealItem] = []
            for item in action.data.items:
                if item.key == item_key:
                    item = update(item)
                    result.append(item)
                items.append(item)
            return replace(action, data=replace(action.data, items=tuple(items)))

        self.update(action_id, apply)
        return result[0] if result else None

    def pending(self) -> list[Action]:
        """Return actions that are selected and not yet applied."""
        return [action for action in self._actions if action.is_pending]

    def unapplied(self) -> list[Action]:
        """Return every action that has not been committed."""
        return [action for action in self._actions if not action.is_applied]

    def has_unresolved_meals(self, *, selected_only: bool = True) -> bool:
        """Return True when a meal item still lacks a matched food."""
        for action in self._actions:
            if action.kind != "meal" or action.is_applied:
                continue
            if selected_only and not action.selected:
                continue
            if any(item.matched_food is None for item in action.meal_items()):
                return True
        return False

    def clear(self) -> None:
        """Drop every action and invalidate in-flight resolution."""
        self._actions = []
        self.generation += 1
