"""
Conversation scenarios through Orchestrator.handle_message.

Every test drives whole turns against the in-memory store and checks what
was (and was not) written.

Run: pytest tests/test_orchestrator.py -v
"""
import pytest

from conftest import banana
from nutripal.core import config
from nutripal.models.pending_actions import (
    FoodLogAction, FoodLogPayload, SavedRecipeLogAction, SavedRecipeLogPayload,
)
from nutripal.models.schemas import IntentResult, LookupResult, NutritionData, ProductOption, ResponseType

USER = "user-1"


def intent(name, **fields):
    return IntentResult(intent=name, confidence=95, **fields)


@pytest.fixture
def banana_lookup(lookup):
    lookup.results["banana"] = LookupResult(status="success", nutrition_data=banana(), confidence_score=95,
                                            product_name="Banana, raw", source="usda_fdc")
    return lookup


@pytest.fixture
def smoothie_proposal(store, saved_recipe):
    action = SavedRecipeLogAction(data=SavedRecipeLogPayload(
        recipe_id="recipe-1", recipe_name="Morning Smoothie", requested_servings=2,
    ))
    store.set(USER, action)
    return action


class TestFoodLogging:

    def test_banana_is_proposed_not_logged(self, orchestrator, language, banana_lookup, supabase, store):
        language.intents = [intent("log_food", food_items=["banana"], portions=["1 medium"])]
        response = orchestrator.handle_message(USER, "1 banana")

        assert response.status == "success"
        assert response.response_type == ResponseType.CONFIRMATION_FOOD_LOG
        assert supabase.rows("food_log") == []
        pending = store.get(USER)
        assert pending.type == "food_log"
        assert response.data["proposal_id"] == pending.id

    def test_quantity_inside_the_food_name_is_the_portion(self, orchestrator, language, banana_lookup, store):
        language.intents = [intent("log_food", food_items=["2 banana"])]
        language.multiplier = 2.0
        response = orchestrator.handle_message(USER, "2 banana")

        assert response.response_type == ResponseType.CONFIRMATION_FOOD_LOG
        assert banana_lookup.calls == ["banana"]
        assert store.get(USER).data.items[0].calories == 210

    def test_yes_commits_once(self, orchestrator, language, banana_lookup, supabase, store):
        language.intents = [intent("log_food", food_items=["banana"], portions=["1 medium"])]
        orchestrator.handle_message(USER, "1 banana")

        logged = orchestrator.handle_message(USER, "yes")
        assert logged.response_type == ResponseType.FOOD_LOGGED
        assert len(supabase.rows("food_log")) == 1
        assert supabase.rows("food_log")[0]["calories"] == 105
        assert store.get(USER) is None

        language.intents = [intent("confirm")]
        again = orchestrator.handle_message(USER, "yes")
        assert again.response_type == ResponseType.NOTHING_TO_CONFIRM
        assert len(supabase.rows("food_log")) == 1

    def test_missing_portion_is_asked_then_scaled(self, orchestrator, language, banana_lookup, store):
        language.intents = [intent("log_food", food_items=["banana"])]
        asked = orchestrator.handle_message(USER, "log a banana")
        assert asked.response_type == ResponseType.AWAITING_SERVING_SIZE

        proposed = orchestrator.handle_message(USER, "2 medium")
        assert proposed.response_type == ResponseType.CONFIRMATION_FOOD_LOG
        assert store.get(USER).data.items[0].calories == 210

    def test_ambiguous_product_then_numbered_choice(self, orchestrator, language, lookup, store, supabase):
        cup = dict(serving_size="1 cup", protein_g=10, fat_total_g=2, carbs_g=15)
        lookup.results["yogurt"] = LookupResult(status="ambiguous", options=[
            ProductOption(product_name="Yogurt, Greek, plain", score=88,
                          nutrition_data=NutritionData(food_name="Yogurt, Greek, plain", calories=130, **cup)),
            ProductOption(product_name="Yogurt, fruit", score=85,
                          nutrition_data=NutritionData(food_name="Yogurt, fruit", calories=210, **cup)),
        ])
        language.intents = [intent("log_food", food_items=["yogurt"], portions=["1 cup"])]

        question = orchestrator.handle_message(USER, "I had a cup of yogurt")
        assert question.status == "ambiguous"
        assert question.response_type == ResponseType.AMBIGUOUS_PRODUCT

        proposal = orchestrator.handle_message(USER, "the second one")
        assert proposal.response_type == ResponseType.CONFIRMATION_FOOD_LOG
        assert store.get(USER).data.items[0].food_name == "Yogurt, fruit"
        assert supabase.rows("food_log") == []

    @pytest.fixture
    def eggs_and_toast(self, lookup):
        lookup.results["eggs"] = LookupResult(status="success", confidence_score=95, nutrition_data=NutritionData(
            food_name="Egg, whole", serving_size="1 large", calories=72, protein_g=6.3, fat_total_g=4.8, carbs_g=0.4,
        ))
        slice_ = dict(serving_size="1 slice", protein_g=3, fat_total_g=1, carbs_g=14)
        lookup.results["toast"] = LookupResult(status="ambiguous", options=[
            ProductOption(product_name="Bread, white, toasted", score=90,
                          nutrition_data=NutritionData(food_name="Bread, white, toasted", calories=80, **slice_)),
            ProductOption(product_name="Bread, whole wheat, toasted", score=88,
                          nutrition_data=NutritionData(food_name="Bread, whole wheat, toasted", calories=75, **slice_)),
        ])
        return lookup

    def test_resolved_foods_survive_a_product_question(self, orchestrator, language, eggs_and_toast, store):
        language.intents = [intent("log_food", food_items=["eggs", "toast"], portions=["2 large", "1 slice"])]
        question = orchestrator.handle_message(USER, "eggs and toast")
        assert question.response_type == ResponseType.AMBIGUOUS_PRODUCT

        proposal = orchestrator.handle_message(USER, "1")
        assert proposal.response_type == ResponseType.CONFIRMATION_FOOD_LOG
        items = store.get(USER).data.items
        assert [(i.food_name, i.calories) for i in items] == [("Egg, whole", 144), ("Bread, white, toasted", 80)]

    def test_foods_after_the_ambiguous_one_are_resolved_after_the_pick(self, orchestrator, language,
                                                                       eggs_and_toast, store):
        language.intents = [intent("log_food", food_items=["toast", "eggs"], portions=["1 slice", "2 large"])]
        orchestrator.handle_message(USER, "toast and eggs")
        assert eggs_and_toast.calls == ["toast"]

        orchestrator.handle_message(USER, "the second one")
        assert eggs_and_toast.calls == ["toast", "eggs"]
        items = store.get(USER).data.items
        assert [i.food_name for i in items] == ["Bread, whole wheat, toasted", "Egg, whole"]

    def test_unknown_food_is_estimated(self, orchestrator, language, store):
        language.intents = [intent("log_food", food_items=["grandma's stew"], portions=["1 bowl"])]
        response = orchestrator.handle_message(USER, "I had a bowl of grandma's stew")

        assert response.response_type == ResponseType.CONFIRMATION_FOOD_LOG
        assert store.get(USER).data.items[0].source == "estimate"


class TestSavedRecipes:

    def test_yes_logs_requested_servings(self, orchestrator, smoothie_proposal, supabase, store, language):
        response = orchestrator.handle_message(USER, "yes")

        assert response.response_type == ResponseType.RECIPE_LOGGED
        rows = supabase.rows("food_log")
        assert len(rows) == 1
        assert (rows[0]["calories"], rows[0]["protein_g"], rows[0]["fat_total_g"], rows[0]["carbs_g"]) == (500, 20, 10, 80)
        assert rows[0]["recipe_id"] == "recipe-1"
        assert store.get(USER) is None

        language.intents = [intent("confirm")]
        assert orchestrator.handle_message(USER, "yes").response_type == ResponseType.NOTHING_TO_CONFIRM
        assert len(supabase.rows("food_log")) == 1

    def test_servings_number_overrides(self, orchestrator, smoothie_proposal, supabase):
        orchestrator.handle_message(USER, "3 servings")
        assert supabase.rows("food_log")[0]["calories"] == 750

    def test_log_recipe_intent_finds_the_recipe(self, orchestrator, language, saved_recipe, store):
        language.intents = [intent("log_recipe", recipe_name="morning smoothie", servings=2)]
        response = orchestrator.handle_message(USER, "log 2 servings of my morning smoothie")

        assert response.response_type == ResponseType.SAVED_RECIPE_CONFIRMATION_PROMPT
        assert store.get(USER).data.requested_servings == 2

    def test_similar_names_ask_which_recipe(self, orchestrator, language, supabase, store):
        supabase.tables["user_recipes"] = [
            {"id": "a", "user_id": USER, "recipe_name": "Chicken curry"},
            {"id": "b", "user_id": USER, "recipe_name": "Chicken curry soup"},
        ]
        language.intents = [intent("log_recipe", recipe_name="curry")]
        response = orchestrator.handle_message(USER, "log my curry")

        assert response.response_type == ResponseType.SAVED_RECIPE_FOUND_MULTIPLE
        chosen = orchestrator.handle_message(USER, "2")
        assert chosen.response_type == ResponseType.SAVED_RECIPE_CONFIRMATION_PROMPT
        assert store.get(USER).data.recipe_id == "b"

    def test_unknown_recipe(self, orchestrator, language, store):
        language.intents = [intent("log_recipe", recipe_name="lasagna")]
        response = orchestrator.handle_message(USER, "log my lasagna")
        assert response.response_type == ResponseType.SAVED_RECIPE_NOT_FOUND
        assert store.get(USER) is None


class TestRecipeAuthoring:

    def test_save_recipe_through_confirmation(self, orchestrator, language, supabase, store):
        language.intents = [intent("save_recipe", recipe_name="Pancakes",
                                   recipe_text="2 cups flour, 1 egg, 100g butter")]
        ready = orchestrator.handle_message(USER, "save my pancakes: 2 cups flour, 1 egg, 100g butter")
        assert ready.response_type == ResponseType.READY_TO_SAVE
        assert store.get(USER).type == "recipe_save"
        assert supabase.rows("user_recipes") == []

        saved = orchestrator.handle_message(USER, "yes")
        assert saved.response_type == ResponseType.RECIPE_SAVED
        assert len(supabase.rows("user_recipes")) == 1
        assert store.get(USER) is None

    def test_topic_switch_abandons_the_flow(self, orchestrator, language, banana_lookup, store, supabase):
        language.intents = [intent("save_recipe", recipe_name="Pancakes",
                                   recipe_text="2 cups flour, 1 egg, 100g butter")]
        orchestrator.handle_message(USER, "save my pancakes")

        language.intents = [intent("log_food", food_items=["banana"], portions=["1 medium"])]
        response = orchestrator.handle_message(USER, "I just ate a banana")

        assert response.response_type == ResponseType.CONFIRMATION_FOOD_LOG
        assert store.get(USER).type == "food_log"
        assert supabase.rows("user_recipes") == []

    def test_food_request_during_duplicate_question_is_not_a_choice(self, orchestrator, language, supabase, store):
        supabase.tables["user_recipes"] = [{
            "id": "old-1", "user_id": USER, "recipe_name": "Pancakes", "servings": 2,
            "fingerprint": "butter,egg,flour", "calories": 400, "protein_g": 8, "fat_total_g": 20, "carbs_g": 45,
        }]
        language.intents = [intent("save_recipe", recipe_name="Pancakes",
                                   recipe_text="2 cups flour, 1 egg, 100g butter")]
        asked = orchestrator.handle_message(USER, "save my pancakes")
        assert asked.response_type == ResponseType.PENDING_DUPLICATE_CONFIRM

        language.intents = [intent("log_food", food_items=["apples"], portions=["2"])]
        response = orchestrator.handle_message(USER, "log 2 apples")

        assert response.response_type == ResponseType.CONFIRMATION_FOOD_LOG
        assert supabase.rows("food_log") == []
        assert store.get(USER).type == "food_log"

    def test_food_request_during_servings_question_is_not_a_count(self, orchestrator, language, supabase, store):
        language.intents = [intent("save_recipe", recipe_name="Herb broth",
                                   recipe_text="some stock, a bunch of herbs, 2 cups water")]
        orchestrator.handle_message(USER, "save my herb broth")
        asked = orchestrator.handle_message(USER, "about 2 liters")
        assert asked.response_type == ResponseType.PENDING_SERVINGS_CONFIRM

        language.intents = [intent("log_food", food_items=["eggs"], portions=["2"])]
        response = orchestrator.handle_message(USER, "I just ate 2 eggs")

        assert response.response_type == ResponseType.CONFIRMATION_FOOD_LOG
        assert supabase.rows("user_recipes") == []
        assert store.get(USER).type == "food_log"

    def test_partly_written_save_is_not_repeated(self, orchestrator, language, supabase, store):
        language.intents = [intent("save_recipe", recipe_name="Pancakes",
                                   recipe_text="2 cups flour, 1 egg, 100g butter")]
        proposal = orchestrator.handle_message(USER, "save my pancakes")

        supabase.fail_tables["recipe_ingredients"] = True
        failed = orchestrator.handle_message(USER, "yes")
        assert failed.response_type == ResponseType.SERVICE_UNAVAILABLE
        assert len(supabase.rows("user_recipes")) == 1
        restored = store.get(USER)
        assert restored.id == proposal.data["proposal_id"]
        assert restored.data.flow.step.value == "ready_to_save"

        supabase.fail_tables["recipe_ingredients"] = False
        saved = orchestrator.handle_message(USER, "yes")
        assert saved.response_type == ResponseType.RECIPE_SAVED
        assert len(supabase.rows("user_recipes")) == 1
        assert len(supabase.rows("recipe_ingredients")) == 3
        assert store.get(USER) is None

    def test_failed_log_after_save_logs_once_on_retry(self, orchestrator, language, supabase):
        language.intents = [intent("log_recipe", recipe_name="Pancakes",
                                   recipe_text="2 cups flour, 1 egg, 100g butter")]
        ready = orchestrator.handle_message(USER, "log my pancakes: 2 cups flour, 1 egg, 100g butter")
        assert ready.response_type == ResponseType.READY_TO_SAVE

        supabase.fail_tables["food_log"] = True
        assert orchestrator.handle_message(USER, "yes").response_type == ResponseType.SERVICE_UNAVAILABLE
        supabase.fail_tables["food_log"] = False
        orchestrator.handle_message(USER, "yes")

        assert len(supabase.rows("user_recipes")) == 1
        assert len(supabase.rows("food_log")) == 1

    def test_no_cancels_the_flow(self, orchestrator, language, store):
        language.intents = [intent("save_recipe", recipe_name="Pancakes",
                                   recipe_text="2 cups flour, 1 egg, 100g butter")]
        orchestrator.handle_message(USER, "save my pancakes")

        response = orchestrator.handle_message(USER, "no")
        assert response.response_type == ResponseType.ACTION_CANCELLED
        assert store.get(USER) is None


class TestGoals:

    def test_goal_update_needs_confirmation(self, orchestrator, language, supabase):
        language.intents = [intent("update_goals", nutrient="protein", target_value=150)]
        proposed = orchestrator.handle_message(USER, "set my protein goal to 150g")
        assert proposed.response_type == ResponseType.CONFIRMATION_GOAL_UPDATE
        assert supabase.rows("user_goals") == []

        done = orchestrator.handle_message(USER, "yes")
        assert done.response_type == ResponseType.GOAL_UPDATED
        goal = supabase.rows("user_goals")[0]
        assert (goal["nutrient"], goal["target_value"], goal["unit"]) == ("protein_g", 150, "g")


class TestProtocol:

    def test_stale_button_commits_nothing(self, orchestrator, smoothie_proposal, supabase, store):
        response = orchestrator.handle_message(USER, "Confirm id:not-the-current-one")

        assert response.response_type == ResponseType.STALE_CONFIRMATION
        assert supabase.rows("food_log") == []
        assert store.get(USER).id == smoothie_proposal.id

    def test_matching_button_commits(self, orchestrator, smoothie_proposal, supabase):
        response = orchestrator.handle_message(USER, f"Confirm id:{smoothie_proposal.id}")
        assert response.response_type == ResponseType.RECIPE_LOGGED
        assert len(supabase.rows("food_log")) == 1

    def test_stale_echoed_pending_action(self, orchestrator, smoothie_proposal, supabase):
        response = orchestrator.handle_message(USER, "yes", client_pending_action={"id": "older"})
        assert response.response_type == ResponseType.STALE_CONFIRMATION
        assert supabase.rows("food_log") == []

    def test_button_with_nothing_pending(self, orchestrator):
        assert orchestrator.handle_message(USER, "Confirm").response_type == ResponseType.NOTHING_TO_CONFIRM

    def test_cancel_button(self, orchestrator, smoothie_proposal, store):
        assert orchestrator.handle_message(USER, "Cancel").response_type == ResponseType.ACTION_CANCELLED
        assert store.get(USER) is None

    def test_thanks_keeps_the_proposal(self, orchestrator, smoothie_proposal, store, language):
        response = orchestrator.handle_message(USER, "thanks!")
        assert response.response_type == ResponseType.CHAT_RESPONSE
        assert store.get(USER).id == smoothie_proposal.id
        assert not [c for c in language.calls if c[0] == "classify_intent"]

    def test_new_proposal_supersedes_the_old_one(self, orchestrator, smoothie_proposal, language, banana_lookup, store):
        language.intents = [intent("log_food", food_items=["banana"], portions=["1 medium"])]
        orchestrator.handle_message(USER, "actually log a banana instead")
        assert store.get(USER).type == "food_log"

    def test_failed_commit_restores_the_proposal(self, orchestrator, smoothie_proposal, supabase, store):
        supabase.fail_tables["food_log"] = True
        failed = orchestrator.handle_message(USER, "yes")

        assert failed.status == "error"
        assert failed.response_type == ResponseType.SERVICE_UNAVAILABLE
        assert "food_log" not in failed.message
        assert store.get(USER).id == smoothie_proposal.id

        supabase.fail_tables["food_log"] = False
        retried = orchestrator.handle_message(USER, "yes")
        assert retried.response_type == ResponseType.RECIPE_LOGGED
        assert len(supabase.rows("food_log")) == 1


class TestTurnHandling:

    def test_greeting_is_phrased_by_the_language_service(self, orchestrator, language):
        language.intents = [intent("greet")]
        language.reply = "Hey! What did you eat today?"
        assert orchestrator.handle_message(USER, "hello").message == "Hey! What did you eat today?"

    def test_unexpected_error_is_fatal(self, orchestrator, language):
        def boom(message, history=None):
            raise RuntimeError("secret stack detail")
        language.classify_intent = boom

        response = orchestrator.handle_message(USER, "hello")
        assert response.status == "error"
        assert response.response_type == ResponseType.FATAL_ERROR
        assert "secret" not in response.message

    def test_empty_message(self, orchestrator):
        response = orchestrator.handle_message(USER, "   ")
        assert response.status == "clarification"

    def test_long_message_is_truncated(self, orchestrator, language):
        orchestrator.handle_message(USER, "a" * (config.MAX_MESSAGE_CHARS + 500))
        classified = [c for c in language.calls if c[0] == "classify_intent"][0]
        assert len(classified[1]) == config.MAX_MESSAGE_CHARS

    def test_turn_is_logged_and_context_kept(self, orchestrator, language, banana_lookup, supabase):
        language.intents = [intent("log_food", food_items=["banana"], portions=["1 medium"])]
        orchestrator.handle_message(USER, "1 banana", session_id="s1")

        log = supabase.rows("agent_execution_logs")[0]
        assert log["intent"] == "log_food"
        assert log["response_type"] == "confirmation_food_log"
        assert [m["role"] for m in supabase.rows("chat_messages")] == ["user", "assistant"]

        session = supabase.rows("chat_sessions")[0]
        assert session["last_intent"] == "log_food"
        assert session["current_mode"] == "awaiting_confirmation"
        assert session["buffer"]["recent_foods"] == ["Banana, raw"]

    def test_log_failure_does_not_affect_the_reply(self, orchestrator, language, supabase):
        supabase.fail_tables["agent_execution_logs"] = True
        language.intents = [intent("off_topic")]
        response = orchestrator.handle_message(USER, "what's the weather")
        assert response.status == "success"

    def test_other_intents_use_the_tool_loop(self, orchestrator, language):
        from test_tool_loop import model_turn, text
        language.intents = [intent("query_nutrition")]
        language.chat_responses = [model_turn(text("A banana has about 105 kcal."))]
        response = orchestrator.handle_message(USER, "how many calories in a banana?")
        assert response.message == "A banana has about 105 kcal."


def test_pending_action_state_is_per_user(orchestrator, store, language, banana_lookup):
    store.set("someone-else", FoodLogAction(data=FoodLogPayload(items=[banana()])))
    language.intents = [intent("confirm")]
    assert orchestrator.handle_message(USER, "yes").response_type == ResponseType.NOTHING_TO_CONFIRM
    assert store.get("someone-else") is not None
