from __future__ import annotations

from html import escape


def render_chat_page(title: str = "Elara") -> str:
    title_html = escape(title)
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8" />
  <meta name="viewport" content="width=device-width, initial-scale=1" />
  <title>{title_html} · Herbal Remedies</title>
  <style>
{_styles()}
  </style>
</head>
<body>
  <header>
    <h1>{title_html}</h1>
    <span class="tagline">Herbal remedy guide</span>
    <div class="header-actions">
      <label class="toggle"><input type="checkbox" id="edible-mode" /> Edible mode</label>
      <button type="button" id="open-drawer" hidden>Saved recipes</button>
      <span id="whoami" class="muted"></span>
      <button type="button" id="logout" hidden>Log out</button>
    </div>
  </header>
  <section id="auth" class="panel" hidden>
    <form id="login-form">
      <h2>Log in</h2>
      <input name="username" placeholder="Username" autocomplete="username" />
      <input name="password" type="password" placeholder="Password" autocomplete="current-password" />
      <button type="submit">Log in</button>
    </form>
    <form id="signup-form">
      <h2>Sign up</h2>
      <input name="email" type="email" placeholder="Email" autocomplete="email" />
      <input name="username" placeholder="Username" />
      <input name="password" type="password" placeholder="Password" autocomplete="new-password" />
      <input name="confirmPassword" type="password" placeholder="Confirm password" />
      <button type="submit">Create account</button>
    </form>
  </section>
  <main id="chat" hidden>
    <div id="error-banner" class="banner" hidden></div>
    <div id="messages" aria-live="polite"></div>
    <form id="prompt-form">
      <input id="prompt" autocomplete="off" placeholder="Describe how you are feeling..." />
      <button type="submit" id="send">Send</button>
    </form>
  </main>
  <aside id="drawer" class="panel" hidden>
    <div class="drawer-head">
      <h2 id="drawer-title">Saved Recipes</h2>
      <button type="button" id="toggle-deleted">Recently deleted</button>
      <button type="button" id="close-drawer">Close</button>
    </div>
    <div id="drawer-body"></div>
  </aside>
  <div id="toast" class="toast" hidden></div>
  <script>
{_script()}
  </script>
</body>
</html>
"""


def _styles() -> str:
    return """    :root {
      color-scheme: light;
      --bg: #f6f4ee;
      --panel: #fff;
      --border: #d8d2c2;
      --accent: #4f7a3a;
      --muted: #6b665a;
      font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", sans-serif;
    }
    [hidden] { display: none !important; }
    body { margin: 0; background: var(--bg); color: #222; min-height: 100vh; display: flex; flex-direction: column; }
    header { display: flex; align-items: baseline; gap: 0.75rem; padding: 0.75rem 1rem; border-bottom: 1px solid var(--border); background: var(--panel); }
    header h1 { margin: 0; font-size: 1.3rem; color: var(--accent); }
    .tagline, .muted { color: var(--muted); font-size: 0.85rem; }
    .header-actions { margin-left: auto; display: flex; gap: 0.5rem; align-items: center; }
    button { border: 1px solid var(--border); background: #fff; border-radius: 6px; padding: 0.35rem 0.7rem; cursor: pointer; }
    button.primary, form button[type=submit] { background: var(--accent); color: #fff; border-color: var(--accent); }
    .panel { background: var(--panel); border: 1px solid var(--border); border-radius: 8px; margin: 1rem; padding: 1rem; }
    #auth { display: flex; gap: 2rem; flex-wrap: wrap; }
    #auth form { display: flex; flex-direction: column; gap: 0.5rem; min-width: 240px; }
    input { padding: 0.45rem; border: 1px solid var(--border); border-radius: 6px; }
    main { flex: 1; display: flex; flex-direction: column; max-width: 960px; width: 100%; margin: 0 auto; }
    #messages { flex: 1; overflow-y: auto; padding: 1rem; display: flex; flex-direction: column; gap: 0.75rem; }
    .message { padding: 0.6rem 0.8rem; border-radius: 8px; max-width: 85%; white-space: pre-wrap; }
    .message.user { align-self: flex-end; background: #e4eddc; }
    .message.assistant { align-self: flex-start; background: var(--panel); border: 1px solid var(--border); }
    .tool-note { color: var(--muted); font-size: 0.8rem; font-style: italic; }
    .carousel { display: flex; gap: 0.75rem; overflow-x: auto; padding: 0.25rem 0 0.5rem; white-space: normal; }
    .card { flex: 0 0 260px; border: 1px solid var(--border); border-radius: 8px; padding: 0.6rem; background: #fcfbf7; }
    .card h3 { margin: 0 0 0.2rem; font-size: 1rem; }
    .card h4 { margin: 0.4rem 0 0.2rem; font-size: 0.85rem; }
    .card img { width: 100%; height: 120px; object-fit: cover; border-radius: 6px; background: #eee; }
    .card .symptom { text-transform: capitalize; font-size: 0.75rem; color: var(--accent); }
    .card .actions { display: flex; gap: 0.4rem; margin-top: 0.5rem; }
    #prompt-form { display: flex; gap: 0.5rem; padding: 0.75rem 1rem; border-top: 1px solid var(--border); }
    #prompt { flex: 1; }
    .banner { background: #fbe3e0; color: #8a1f11; padding: 0.5rem 1rem; margin: 0.5rem 1rem 0; border-radius: 6px; }
    #drawer { position: fixed; right: 0; top: 0; bottom: 0; width: min(420px, 95vw); margin: 0; overflow-y: auto; border-radius: 0; box-shadow: -4px 0 12px rgba(0,0,0,0.1); }
    .drawer-head { display: flex; gap: 0.5rem; align-items: center; }
    .drawer-head h2 { flex: 1; margin: 0; font-size: 1.1rem; }
    .toast { position: fixed; bottom: 1rem; left: 50%; transform: translateX(-50%); background: #333; color: #fff; padding: 0.5rem 1rem; border-radius: 6px; }
    .toast.error { background: #8a1f11; }"""


def _script() -> str:
    return r"""    const TOKEN_KEY = "authToken";
    const USER_KEY = "authUser";
    const conversation = [];
    let drawerMode = "saved";

    const $ = (id) => document.getElementById(id);

    function authToken() { return localStorage.getItem(TOKEN_KEY); }
    function authUser() {
      try { return JSON.parse(localStorage.getItem(USER_KEY) || "null"); } catch (err) { return null; }
    }
    function authHeaders(extra) {
      const headers = Object.assign({}, extra || {});
      const token = authToken();
      if (token) headers["Authorization"] = "Bearer " + token;
      return headers;
    }
    async function postJSON(url, body) {
      return fetch(url, {
        method: "POST",
        headers: authHeaders({"Content-Type": "application/json"}),
        body: JSON.stringify(body),
      });
    }

    function toast(message, isError) {
      const node = $("toast");
      node.textContent = message;
      node.className = isError ? "toast error" : "toast";
      node.hidden = false;
      clearTimeout(toast.timer);
      toast.timer = setTimeout(() => { node.hidden = true; }, 3000);
    }
    function showError(message) {
      const banner = $("error-banner");
      banner.textContent = message || "";
      banner.hidden = !message;
    }

    function refreshAuth() {
      const user = authUser();
      const signedIn = Boolean(authToken() && user);
      $("auth").hidden = signedIn;
      $("chat").hidden = !signedIn;
      $("logout").hidden = !signedIn;
      $("open-drawer").hidden = !signedIn;
      $("whoami").textContent = signedIn ? user.username : "";
    }

    $("login-form").addEventListener("submit", async (event) => {
      event.preventDefault();
      const form = new FormData(event.target);
      const username = form.get("username"), password = form.get("password");
      if (!username || !password) { toast("Please enter both username and password", true); return; }
      const response = await postJSON("/api/auth/login", {username, password});
      const data = await response.json().catch(() => ({}));
      if (!response.ok) { toast(data.error || "Invalid username or password", true); return; }
      localStorage.setItem(TOKEN_KEY, data.access_token);
      localStorage.setItem(USER_KEY, JSON.stringify({username}));
      toast("Logged in successfully!");
      event.target.reset();
      refreshAuth();
    });

    $("signup-form").addEventListener("submit", async (event) => {
      event.preventDefault();
      const body = Object.fromEntries(new FormData(event.target).entries());
      if (!body.email || !body.username || !body.password || !body.confirmPassword) {
        toast("Please fill in all fields", true);
        return;
      }
      const response = await postJSON("/api/auth/register", body);
      const data = await response.json().catch(() => ({}));
      if (!response.ok) { toast(data.error || "Registration failed", true); return; }
      toast("Please check your email for verification instructions");
      event.target.reset();
    });

    $("logout").addEventListener("click", () => {
      localStorage.removeItem(TOKEN_KEY);
      localStorage.removeItem(USER_KEY);
      conversation.length = 0;
      $("messages").innerHTML = "";
      refreshAuth();
    });

    function el(tag, className, text) {
      const node = document.createElement(tag);
      if (className) node.className = className;
      if (text !== undefined && text !== null) node.textContent = text;
      return node;
    }

    function recipeCard(recipe, symptom) {
      const card = el("div", "card");
      card.appendChild(el("h3", null, recipe.recipeName));
      if (symptom) card.appendChild(el("div", "symptom", "For: " + symptom));
      card.appendChild(el("h4", null, "Ingredients"));
      const list = el("ul");
      (recipe.ingredients || []).forEach((item) => list.appendChild(el("li", null, item)));
      card.appendChild(list);
      card.appendChild(el("h4", null, "Instructions"));
      card.appendChild(el("p", null, recipe.instructions));
      const actions = el("div", "actions");
      const save = el("button", null, "Save");
      save.addEventListener("click", async () => {
        save.disabled = true;
        const response = await postJSON("/api/recipes", Object.assign({symptom: symptom || ""}, recipe));
        const data = await response.json().catch(() => ({}));
        toast(data.message || (response.ok ? "Recipe saved." : "Failed to save recipe."), !response.ok);
        save.disabled = false;
      });
      const pdf = el("button", null, "Download PDF");
      pdf.addEventListener("click", () => downloadPDF("/api/recipes/pdf", {symptom: symptom || "", recipe: recipe}, recipe.recipeName));
      actions.append(save, pdf);
      card.appendChild(actions);
      return card;
    }

    async function downloadPDF(url, body, name) {
      const response = await postJSON(url, body);
      if (!response.ok) { toast("Failed to download recipe PDF.", true); return; }
      const blob = await response.blob();
      const link = document.createElement("a");
      link.href = URL.createObjectURL(blob);
      link.download = (name || "recipe") + ".pdf";
      document.body.appendChild(link);
      link.click();
      link.remove();
      URL.revokeObjectURL(link.href);
    }

    function plantCard(symptom, plant, container) {
      const card = el("div", "card");
      if (plant.plantImageURL) {
        const img = el("img");
        img.src = plant.plantImageURL;
        img.alt = plant.plantName;
        card.appendChild(img);
      }
      card.appendChild(el("div", "symptom", symptom));
      card.appendChild(el("h3", null, plant.plantName));
      card.appendChild(el("div", "muted", plant.scientificName));
      if (plant.medicalRating != null) card.appendChild(el("div", "muted", "Medical rating: " + plant.medicalRating + "/5"));
      if (plant.edibleRating != null) card.appendChild(el("div", "muted", "Edible rating: " + plant.edibleRating + "/5"));
      if (plant.benefits) card.appendChild(el("p", null, plant.benefits));
      if (plant.partsUsed) card.appendChild(el("p", "muted", "Parts used: " + plant.partsUsed));
      const actions = el("div", "actions");
      const getRecipe = el("button", null, "Get recipe");
      getRecipe.addEventListener("click", async () => {
        getRecipe.disabled = true;
        const response = await postJSON("/api/recipe", {
          plantName: plant.plantName,
          scientificName: plant.scientificName,
          edibleUses: plant.edibleUses || undefined,
        });
        const data = await response.json().catch(() => ({}));
        getRecipe.disabled = false;
        if (!response.ok || !data.output) { toast(data.error || "Failed to fetch recipe", true); return; }
        container.appendChild(recipeCard(data.output, symptom));
      });
      actions.appendChild(getRecipe);
      if (plant.plantURL) {
        const link = el("a", null, "Learn more");
        link.href = plant.plantURL;
        link.target = "_blank";
        link.rel = "noopener";
        actions.appendChild(link);
      }
      card.appendChild(actions);
      return card;
    }

    function renderToolResult(event, holder) {
      if (event.error) { holder.appendChild(el("div", "tool-note", event.toolName + " failed: " + event.error)); return; }
      const result = event.result || {};
      const strip = el("div", "carousel");
      if (event.toolName === "findHerbalRemedies") {
        Object.entries(result.output || {}).forEach(([symptom, value]) => {
          (Array.isArray(value) ? value : [value]).forEach((plant) => strip.appendChild(plantCard(symptom, plant, strip)));
        });
      } else if (event.toolName === "generateRecipe") {
        strip.appendChild(recipeCard(result));
      } else if (event.toolName === "downloadRecipePDF" && result.success) {
        const button = el("button", "primary", "Download " + result.data.recipe.recipeName + ".pdf");
        button.addEventListener("click", () => downloadPDF(result.downloadUrl, result.data, result.data.recipe.recipeName));
        strip.appendChild(button);
      } else if (result.message) {
        holder.appendChild(el("div", "tool-note", result.message));
      }
      if (strip.childElementCount) holder.appendChild(strip);
    }

    async function sendMessage(text) {
      showError(null);
      conversation.push({role: "user", content: text});
      $("messages").appendChild(el("div", "message user", text));
      const assistant = {role: "assistant", content: "", toolInvocations: []};
      const bubble = el("div", "message assistant");
      const textNode = el("div");
      const toolsNode = el("div");
      bubble.append(toolsNode, textNode);
      $("messages").appendChild(bubble);
      $("send").disabled = true;
      try {
        const response = await fetch("/api/chat", {
          method: "POST",
          headers: authHeaders({"Content-Type": "application/json"}),
          body: JSON.stringify({messages: conversation, edibleMode: $("edible-mode").checked}),
        });
        if (!response.ok) {
          const data = await response.json().catch(() => ({}));
          throw new Error(data.error || "Something went wrong. Please try again.");
        }
        const reader = response.body.getReader();
        const decoder = new TextDecoder();
        let buffer = "";
        for (;;) {
          const {value, done} = await reader.read();
          if (done) break;
          buffer += decoder.decode(value, {stream: true});
          let boundary;
          while ((boundary = buffer.indexOf("\n\n")) >= 0) {
            const frame = buffer.slice(0, boundary);
            buffer = buffer.slice(boundary + 2);
            if (!frame.startsWith("data:")) continue;
            const event = JSON.parse(frame.slice(5));
            if (event.type === "text") {
              assistant.content += event.text;
              textNode.textContent = assistant.content;
            } else if (event.type === "tool_call") {
              assistant.toolInvocations.push({state: "pending", toolCallId: event.toolCallId, toolName: event.toolName, args: event.args});
            } else if (event.type === "tool_result") {
              const invocation = assistant.toolInvocations.find((item) => item.toolCallId === event.toolCallId);
              if (invocation) {
                invocation.state = "result";
                invocation.result = event.error ? {error: event.error} : event.result;
              }
              renderToolResult(event, toolsNode);
            } else if (event.type === "error") {
              showError(event.message);
            }
          }
          $("messages").scrollTop = $("messages").scrollHeight;
        }
      } catch (err) {
        showError(err.message);
      } finally {
        conversation.push(assistant);
        $("send").disabled = false;
      }
    }

    $("prompt-form").addEventListener("submit", (event) => {
      event.preventDefault();
      const text = $("prompt").value.trim();
      if (!text) return;
      $("prompt").value = "";
      sendMessage(text);
    });

    async function loadDrawer() {
      const body = $("drawer-body");
      body.textContent = "Loading...";
      const deleted = drawerMode === "deleted";
      $("drawer-title").textContent = deleted ? "Recently Deleted" : "Saved Recipes";
      $("toggle-deleted").textContent = deleted ? "Back to saved" : "Recently deleted";
      const response = await fetch(deleted ? "/api/recipes/deleted" : "/api/recipes", {headers: authHeaders()});
      const data = await response.json().catch(() => ({}));
      body.innerHTML = "";
      if (data.error) toast(data.error, true);
      const entries = (deleted ? data.recentlyDeleted : data.savedRecipes) || [];
      if (!entries.length) { body.appendChild(el("p", "muted", deleted ? "Nothing deleted recently." : "No saved recipes yet.")); return; }
      entries.forEach((entry) => {
        const card = recipeCard(entry.recipe, entry.symptom);
        card.appendChild(el("div", "muted", deleted ? "Deleted " + (entry.deletedAt || "") : "Saved " + (entry.savedAt || "")));
        const action = el("button", null, deleted ? "Recover" : "Delete");
        action.addEventListener("click", async () => {
          action.disabled = true;
          const url = deleted ? "/api/recipes/" + encodeURIComponent(entry.id) + "/recover" : "/api/recipes/" + encodeURIComponent(entry.id);
          const result = await fetch(url, {method: deleted ? "POST" : "DELETE", headers: authHeaders()});
          const payload = await result.json().catch(() => ({}));
          toast(payload.message || "Request failed.", !result.ok);
          if (result.ok) card.remove();
          action.disabled = false;
        });
        card.appendChild(action);
        body.appendChild(card);
      });
    }

    $("open-drawer").addEventListener("click", () => { drawerMode = "saved"; $("drawer").hidden = false; loadDrawer(); });
    $("close-drawer").addEventListener("click", () => { $("drawer").hidden = true; });
    $("toggle-deleted").addEventListener("click", () => { drawerMode = drawerMode === "saved" ? "deleted" : "saved"; loadDrawer(); });

    refreshAuth();"""


def render_verify_email_page(title: str = "Elara") -> str:
    title_html = escape(title)
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8" />
  <meta name="viewport" content="width=device-width, initial-scale=1" />
  <title>Verify your email · {title_html}</title>
  <style>
{_styles()}
  </style>
</head>
<body>
  <header>
    <h1>{title_html}</h1>
    <span class="tagline">Email verification</span>
  </header>
  <main id="verify" class="panel" data-state="loading">
    <h2 id="verify-title">Verifying Your Email</h2>
    <p id="verify-message">Please wait while we verify your email address...</p>
    <div class="verify-actions">
      <button type="button" id="resend" class="primary" hidden>Resend Verification Email</button>
      <a id="home" href="/" hidden>Continue to {title_html}</a>
    </div>
  </main>
  <div id="toast" class="toast" hidden></div>
  <script>
{_verify_script()}
  </script>
</body>
</html>
"""


def _verify_script() -> str:
    return r"""    const $ = (id) => document.getElementById(id);
    const params = new URLSearchParams(window.location.search);

    function toast(message, isError) {
      const node = $("toast");
      node.textContent = message;
      node.className = isError ? "toast error" : "toast";
      node.hidden = false;
      clearTimeout(toast.timer);
      toast.timer = setTimeout(() => { node.hidden = true; }, 3000);
    }
    async function postJSON(url, body) {
      const response = await fetch(url, {
        method: "POST",
        headers: {"Content-Type": "application/json"},
        body: JSON.stringify(body),
      });
      const data = await response.json().catch(() => ({}));
      return {response, data};
    }

    const TITLES = {
      success: "Email Verified!",
      error: "Verification Failed",
      expired: "Link Expired",
    };
    function show(state, message) {
      $("verify").dataset.state = state;
      $("verify-title").textContent = TITLES[state];
      $("verify-message").textContent = message;
      $("resend").hidden = state !== "expired";
      $("home").hidden = false;
      $("home").textContent = state === "success" ? "Continue to Elara" : "Return to Home";
    }

    async function verify() {
      const token = params.get("token");
      if (!token) { show("error", "Invalid verification link"); return; }
      try {
        const {response, data} = await postJSON("/api/auth/verify-email", {token});
        if (response.ok) {
          show("success", data.message || "Your email has been verified successfully!");
          toast("Your account is now active. You can log in.");
        } else if (response.status === 410) {
          show("expired", data.error || "This verification link has expired. Please request a new one.");
        } else {
          show("error", data.error || "Email verification failed");
        }
      } catch (err) {
        show("error", "An error occurred during verification");
      }
    }

    async function emailForResend() {
      if (params.get("email")) return params.get("email");
      const username = params.get("username");
      if (!username) return null;
      const {response, data} = await postJSON("/api/auth/email-for-username", {username});
      return response.ok ? data.email || null : null;
    }

    $("resend").addEventListener("click", async () => {
      try {
        const email = await emailForResend();
        if (!email) { toast("Email address not found. Please try registering again.", true); return; }
        const {response} = await postJSON("/api/auth/resend-verification", {email});
        if (!response.ok) throw new Error("resend failed");
        toast("A new verification email has been sent");
      } catch (err) {
        toast("Failed to resend verification email", true);
      }
    });

    verify();
"""
