"""
Scripts evaluated inside page content regions (frames).

Keep every in-page hook here. Decisions (which input is the username, which frame to use) are made
in Python over the inventory returned by COLLECT_INPUTS; the page only reports and acts.
"""

# Inventory of <input> elements in document order. `index` is the position in
# document.querySelectorAll('input') and is how FILL_AND_SUBMIT addresses fields.
COLLECT_INPUTS = """
() => {
  const inputs = Array.from(document.querySelectorAll('input'));
  return {
    docUrl: location.href,
    formCount: document.forms.length,
    inputs: inputs.map((i, index) => ({
      index,
      name: i.name || '',
      id: i.id || '',
      type: (i.type || '').toLowerCase(),
      placeholder: i.placeholder || '',
      inForm: !!i.form,
    })),
  };
}
"""

# Visible text of the top-level document (keepalive classification).
BODY_TEXT = """
() => (document.body && document.body.innerText) ? document.body.innerText : ''
"""

# Set credentials, add extra hidden fields to the owning form, then submit.
# Returns {ok, method} or {ok: false, error}.
FILL_AND_SUBMIT = """
(plan) => {
  const inputs = Array.from(document.querySelectorAll('input'));
  const pick = (idx) => (idx === null || idx === undefined) ? null : (inputs[idx] || null);
  const user = pick(plan.userIndex);
  const pass = pick(plan.passIndex);
  if (!user && !pass) return { ok: false, error: 'fields_not_found' };

  const setValue = (el, value) => {
    try { el.focus(); } catch (_) {}
    el.value = value;
    el.dispatchEvent(new Event('input', { bubbles: true }));
    el.dispatchEvent(new Event('change', { bubbles: true }));
  };
  if (user) setValue(user, plan.username || '');
  if (pass) setValue(pass, plan.password || '');

  const form = (user && user.form) || (pass && pass.form) || document.forms[0];
  if (!form) return { ok: false, error: 'form_not_found' };

  Object.entries(plan.extraFields || {}).forEach(([name, value]) => {
    let el = form.querySelector(`[name="${CSS.escape(name)}"]`);
    if (!el) {
      el = document.createElement('input');
      el.type = 'hidden';
      el.name = name;
      form.appendChild(el);
    }
    el.value = value;
  });

  const submit = form.querySelector('button[type="submit"], input[type="submit"]');
  if (submit) {
    submit.click();
    return { ok: true, method: 'click' };
  }
  try {
    // An input named "submit" shadows form.submit; call the prototype method.
    HTMLFormElement.prototype.submit.call(form);
    return { ok: true, method: 'native' };
  } catch (e) {
    return { ok: false, error: 'submit_failed:' + String(e) };
  }
}
"""
